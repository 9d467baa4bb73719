"""登录流程编排。

三种登录渠道最终都调用 TokenCodec.issue，令牌主体为客户端后续会出示的标识:
- 密码登录: 登录时使用的用户名或手机号；
- 手机验证码登录: 区号 + 手机号；
- 微信登录: openid。
"""

from dataclasses import dataclass
from datetime import datetime, timezone
import logging

from sqlalchemy.orm import Session

from mcare_api.core.errors import InvalidCredentials, InvalidOrExpiredCode, RateLimited
from mcare_api.core.log import mask_phone
from mcare_api.core.security import IssuedToken, TokenCodec
from mcare_api.models.account import Account
from mcare_api.models.enums import AccountStatus, LoginChannel
from mcare_api.services.identity import IdentityResolver
from mcare_api.services.sms import SmsSender
from mcare_api.services.verification_codes import VerificationCodeStore
from mcare_api.services.wechat import WeChatIdentityBroker

logger = logging.getLogger(__name__)


@dataclass
class AuthResult:
    """登录结果。"""

    token: IssuedToken
    account: Account
    channel: LoginChannel
    is_new_account: bool = False


class AuthenticationOrchestrator:
    """认证门面，协调验证码存储、微信授权、身份解析与令牌签发。"""

    def __init__(
        self,
        *,
        codec: TokenCodec,
        code_store: VerificationCodeStore,
        broker: WeChatIdentityBroker,
        resolver: IdentityResolver,
        sms_sender: SmsSender,
        code_ttl_seconds: int = 300,
    ) -> None:
        self.codec = codec
        self.code_store = code_store
        self.broker = broker
        self.resolver = resolver
        self.sms_sender = sms_sender
        self.code_ttl_seconds = code_ttl_seconds

    def _ensure_active(self, account: Account) -> None:
        if account.status != AccountStatus.ACTIVE:
            logger.warning("login rejected for inactive account id=%s", account.id)
            raise InvalidCredentials("账号已被禁用。")

    def _complete_login(
        self,
        db: Session,
        account: Account,
        *,
        subject: str,
        channel: LoginChannel,
        is_new_account: bool = False,
    ) -> AuthResult:
        self._ensure_active(account)
        self.resolver.touch_last_login(db, account, now=datetime.now(timezone.utc))
        token = self.codec.issue(subject)
        logger.info("login succeeded channel=%s account_id=%s new=%s", channel, account.id, is_new_account)
        return AuthResult(token=token, account=account, channel=channel, is_new_account=is_new_account)

    def login_with_password(self, db: Session, identifier: str, password: str) -> AuthResult:
        """密码登录。"""
        identifier = identifier.strip()
        account = self.resolver.resolve_by_password_credential(db, identifier, password)
        return self._complete_login(db, account, subject=identifier, channel=LoginChannel.PASSWORD)

    def register(
        self,
        db: Session,
        *,
        handle: str,
        password: str,
        role: str | None,
        display_name: str | None = None,
        phone: str | None = None,
    ) -> AuthResult:
        """注册密码账号并直接登录。"""
        account = self.resolver.register_with_password(
            db,
            handle=handle,
            password=password,
            role=role,
            display_name=display_name,
            phone=phone,
        )
        return self._complete_login(
            db,
            account,
            subject=account.handle or handle.strip(),
            channel=LoginChannel.PASSWORD,
            is_new_account=True,
        )

    def send_phone_code(self, region: str, phone: str) -> int:
        """发送短信验证码，返回有效期秒数。"""
        code = self.code_store.try_send(region, phone)
        if code is None:
            raise RateLimited()
        self.sms_sender.send_code(region, phone, code)
        logger.info("verification code sent phone=%s", mask_phone(region, phone))
        return self.code_ttl_seconds

    def verify_phone_and_login(
        self,
        db: Session,
        region: str,
        phone: str,
        code: str,
        role: str | None,
        display_name: str | None = None,
    ) -> AuthResult:
        """校验短信验证码并登录，首次登录自动注册。"""
        if not self.code_store.verify(region, phone, code):
            raise InvalidOrExpiredCode()
        account, created = self.resolver.resolve_or_create_from_phone(db, region, phone, role, display_name)
        return self._complete_login(
            db,
            account,
            subject=account.phone,
            channel=LoginChannel.PHONE,
            is_new_account=created,
        )

    def login_with_wechat(self, db: Session, provider_code: str, role: str | None) -> AuthResult:
        """微信授权码登录，首次登录自动注册。"""
        profile = self.broker.authenticate(provider_code)
        account, created = self.resolver.resolve_or_create_from_external_profile(db, profile, role)
        return self._complete_login(
            db,
            account,
            subject=account.wechat_open_id,
            channel=LoginChannel.WECHAT,
            is_new_account=created,
        )

    def current_account(self, db: Session, token: str) -> Account:
        """校验令牌并解析为账号，供下游业务模块使用。"""
        subject = self.codec.verify(token)
        account = self.resolver.resolve_by_subject(db, subject)
        self._ensure_active(account)
        return account

    def refresh(self, token: str) -> IssuedToken | None:
        """滑动续期。"""
        return self.codec.refresh(token)
