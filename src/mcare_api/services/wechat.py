"""微信授权登录对接。

两步流程: 授权码 -> access_token/openid -> 用户资料。
任一步失败统一抛出 ExternalAuthError，不做自动重试，也不缓存结果。
"""

from dataclasses import dataclass
import logging
from typing import Any

import httpx

from mcare_api.core.config import Settings
from mcare_api.core.errors import ExternalAuthError

logger = logging.getLogger(__name__)


@dataclass
class ExternalProfile:
    """第三方身份资料（一次性使用，不落库）。"""

    # 提供方用户 ID（openid）。
    subject_id: str
    # 跨应用关联 ID（unionid）。
    linking_id: str | None = None
    # 昵称。
    display_name: str | None = None
    # 头像地址。
    avatar_url: str | None = None


@dataclass(frozen=True)
class TokenExchange:
    """授权码换取结果。"""

    access_token: str
    subject_id: str
    linking_id: str | None = None


class WeChatIdentityBroker:
    """微信 OAuth 授权码登录客户端。"""

    def __init__(
        self,
        *,
        app_id: str,
        app_secret: str,
        access_token_url: str,
        user_info_url: str,
        timeout_seconds: float = 8.0,
        client: httpx.Client | None = None,
    ) -> None:
        self._app_id = app_id
        self._app_secret = app_secret
        self._access_token_url = access_token_url
        self._user_info_url = user_info_url
        self._client = client or httpx.Client(timeout=timeout_seconds)

    @classmethod
    def from_settings(cls, settings: Settings, *, client: httpx.Client | None = None) -> "WeChatIdentityBroker":
        return cls(
            app_id=settings.wechat_app_id,
            app_secret=settings.wechat_app_secret,
            access_token_url=settings.wechat_access_token_url,
            user_info_url=settings.wechat_user_info_url,
            timeout_seconds=settings.wechat_timeout_seconds,
            client=client,
        )

    def close(self) -> None:
        self._client.close()

    def _get_json(self, url: str, params: dict[str, str], *, step: str) -> dict[str, Any]:
        try:
            response = self._client.get(url, params=params)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            logger.error("wechat %s request failed: %s", step, exc.__class__.__name__)
            raise ExternalAuthError() from exc
        except ValueError as exc:
            logger.error("wechat %s returned unparseable body", step)
            raise ExternalAuthError() from exc

        if not isinstance(payload, dict) or not payload:
            logger.error("wechat %s returned empty body", step)
            raise ExternalAuthError()
        # 微信接口出错时仍返回 200，通过 errcode 区分。
        errcode = payload.get("errcode")
        if errcode not in (None, 0):
            logger.error("wechat %s error errcode=%s errmsg=%s", step, errcode, payload.get("errmsg"))
            raise ExternalAuthError()
        return payload

    def exchange_code(self, code: str) -> TokenExchange:
        """使用授权码换取访问令牌与 openid。"""
        logger.debug("exchanging wechat authorization code")
        payload = self._get_json(
            self._access_token_url,
            {
                "appid": self._app_id,
                "secret": self._app_secret,
                "code": code,
                "grant_type": "authorization_code",
            },
            step="access_token",
        )
        access_token = payload.get("access_token")
        open_id = payload.get("openid")
        if not isinstance(access_token, str) or not access_token or not isinstance(open_id, str) or not open_id:
            logger.error("wechat access_token response missing access_token/openid")
            raise ExternalAuthError()
        union_id = payload.get("unionid")
        return TokenExchange(
            access_token=access_token,
            subject_id=open_id,
            linking_id=union_id if isinstance(union_id, str) and union_id else None,
        )

    def fetch_profile(self, access_token: str, subject_id: str) -> ExternalProfile:
        """拉取微信用户资料。"""
        logger.debug("fetching wechat user info openid=%s", subject_id)
        payload = self._get_json(
            self._user_info_url,
            {"access_token": access_token, "openid": subject_id, "lang": "zh_CN"},
            step="userinfo",
        )
        open_id = payload.get("openid")
        union_id = payload.get("unionid")
        nickname = payload.get("nickname")
        avatar_url = payload.get("headimgurl")
        return ExternalProfile(
            subject_id=open_id if isinstance(open_id, str) and open_id else subject_id,
            linking_id=union_id if isinstance(union_id, str) and union_id else None,
            display_name=nickname if isinstance(nickname, str) and nickname else None,
            avatar_url=avatar_url if isinstance(avatar_url, str) and avatar_url else None,
        )

    def authenticate(self, code: str) -> ExternalProfile:
        """完整授权流程：换取令牌后拉取资料。"""
        logger.info("starting wechat authentication flow")
        exchange = self.exchange_code(code)
        profile = self.fetch_profile(exchange.access_token, exchange.subject_id)
        # 资料接口未返回 unionid 时沿用换取令牌步骤中的值。
        if profile.linking_id is None and exchange.linking_id is not None:
            profile.linking_id = exchange.linking_id
        logger.info("wechat authentication succeeded openid=%s", profile.subject_id)
        return profile
