"""账号身份解析。

职责:
1. 将令牌主体（用户名/手机号/微信 openid）映射为本地 Account。
2. 手机号与微信渠道首次登录时自动创建账号。
3. 创建时保证各类标识全局唯一（进程内按标识加锁 + 数据库唯一约束兜底）。
"""

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
import logging
from threading import Lock
import time

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mcare_api.core.errors import AccountNotFound, IdentifierConflict, InvalidCredentials
from mcare_api.core.log import mask_phone
from mcare_api.models.account import Account
from mcare_api.models.enums import AccountRole, AccountStatus
from mcare_api.services.local_auth import hash_password, verify_password
from mcare_api.services.wechat import ExternalProfile

logger = logging.getLogger(__name__)

Lookup = Callable[[Session, str], Account | None]


def _by_handle(db: Session, value: str) -> Account | None:
    return db.execute(select(Account).where(Account.handle == value)).scalar_one_or_none()


def _by_phone(db: Session, value: str) -> Account | None:
    return db.execute(select(Account).where(Account.phone == value)).scalar_one_or_none()


def _by_wechat_open_id(db: Session, value: str) -> Account | None:
    return db.execute(select(Account).where(Account.wechat_open_id == value)).scalar_one_or_none()


# 令牌主体依次按以下命名空间查找，命中即停止；新增登录渠道只需追加一项。
SUBJECT_LOOKUPS: tuple[tuple[str, Lookup], ...] = (
    ("handle", _by_handle),
    ("phone", _by_phone),
    ("wechat_open_id", _by_wechat_open_id),
)
# 密码登录允许使用用户名或手机号。
CREDENTIAL_LOOKUPS: tuple[tuple[str, Lookup], ...] = (
    ("handle", _by_handle),
    ("phone", _by_phone),
)


def first_match(db: Session, value: str, lookups: tuple[tuple[str, Lookup], ...]) -> Account | None:
    """按顺序惰性执行查找，返回第一个命中的账号。"""
    for _, lookup in lookups:
        account = lookup(db, value)
        if account is not None:
            return account
    return None


def ensure_unclaimed(db: Session, value: str) -> None:
    """标识已出现在任一命名空间时拒绝创建，保证令牌主体只能解析到一个账号。"""
    owner = first_match(db, value, SUBJECT_LOOKUPS)
    if owner is not None:
        logger.warning("identifier already owned by another account id=%s", owner.id)
        raise IdentifierConflict()


def compose_phone(region: str, phone: str) -> str:
    """拼接区号与号码作为手机号标识，如 +86 与 13800000000 -> +8613800000000。"""
    return f"{region.strip()}{phone.strip()}"


class KeyedLocks:
    """按字符串 key 分配的互斥锁，无人持有或等待时回收。"""

    def __init__(self) -> None:
        self._guard = Lock()
        self._locks: dict[str, tuple[Lock, int]] = {}

    def _acquire(self, key: str) -> Lock:
        with self._guard:
            lock, users = self._locks.get(key, (None, 0))
            if lock is None:
                lock = Lock()
            self._locks[key] = (lock, users + 1)
        lock.acquire()
        return lock

    def _release(self, key: str, lock: Lock) -> None:
        lock.release()
        with self._guard:
            _, users = self._locks[key]
            if users <= 1:
                self._locks.pop(key, None)
            else:
                self._locks[key] = (lock, users - 1)

    @contextmanager
    def hold(self, *keys: str) -> Iterator[None]:
        """按排序后的顺序获取多把锁，避免交叉死锁。"""
        acquired: list[tuple[str, Lock]] = []
        try:
            for key in sorted(set(keys)):
                acquired.append((key, self._acquire(key)))
            yield
        finally:
            for key, lock in reversed(acquired):
                self._release(key, lock)


class IdentityResolver:
    """身份解析器，应用级单例，数据库会话按请求传入。"""

    def __init__(self, *, default_role: AccountRole = AccountRole.MOTHER) -> None:
        self.default_role = default_role
        self._locks = KeyedLocks()

    def parse_role(self, value: str | None) -> AccountRole:
        """解析角色字符串，无法识别时回退默认角色并告警。"""
        try:
            return AccountRole((value or "").strip().upper())
        except ValueError:
            logger.warning("invalid role provided: %r, defaulting to %s", value, self.default_role)
            return self.default_role

    def resolve_by_subject(self, db: Session, subject: str) -> Account:
        """将令牌主体解析为账号。"""
        account = first_match(db, subject, SUBJECT_LOOKUPS)
        if account is None:
            raise AccountNotFound()
        return account

    def resolve_by_password_credential(self, db: Session, identifier: str, password: str) -> Account:
        """按用户名或手机号校验密码。"""
        account = first_match(db, identifier.strip(), CREDENTIAL_LOOKUPS)
        if account is None or not verify_password(password, account.password_hash):
            raise InvalidCredentials()
        return account

    def _insert(self, db: Session, account: Account, reload: Callable[[], Account | None]) -> tuple[Account, bool]:
        """写入新账号；唯一约束冲突说明并发请求已创建，回滚后读取胜出方的记录。"""
        db.add(account)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            existing = reload()
            if existing is None:
                raise
            return existing, False
        db.refresh(account)
        return account, True

    def resolve_or_create_from_phone(
        self,
        db: Session,
        region: str,
        phone: str,
        role: str | None,
        display_name: str | None = None,
    ) -> tuple[Account, bool]:
        """按手机号查找账号，不存在则创建。返回 (账号, 是否新建)。"""
        phone_id = compose_phone(region, phone)
        with self._locks.hold(phone_id):
            account = _by_phone(db, phone_id)
            if account is not None:
                return account, False
            ensure_unclaimed(db, phone_id)

            name =(display_name or "").strip() or f"User{int(time.time() * 1000)}"
            account = Account(
                phone=phone_id,
                role=self.parse_role(role),
                password_hash=None,
                profile_completed=False,
                display_name=name[:128],
                status=AccountStatus.ACTIVE,
            )
            account, created = self._insert(db, account, lambda: _by_phone(db, phone_id))

        if created:
            logger.info(
                "account created via phone id=%s phone=%s role=%s",
                account.id,
                mask_phone(region, phone),
                account.role,
            )
        return account, created

    def resolve_or_create_from_external_profile(
        self,
        db: Session,
        profile: ExternalProfile,
        role: str | None,
    ) -> tuple[Account, bool]:
        """按微信 openid 查找账号，不存在则按资料创建；已存在则刷新展示字段。"""
        open_id = profile.subject_id
        with self._locks.hold(open_id):
            account = _by_wechat_open_id(db, open_id)
            if account is None:
                ensure_unclaimed(db, open_id)
                account = Account(
                    wechat_open_id=open_id,
                    wechat_union_id=profile.linking_id,
                    role=self.parse_role(role),
                    password_hash=None,
                    profile_completed=False,
                    display_name=(profile.display_name or f"wx_{open_id[-8:]}")[:128],
                    avatar_url=profile.avatar_url,
                    status=AccountStatus.ACTIVE,
                )
                account, created = self._insert(db, account, lambda: _by_wechat_open_id(db, open_id))
                if created:
                    logger.info("account created via wechat id=%s openid=%s", account.id, open_id)
                    return account, True

            self._refresh_external_fields(db, account, profile)
            return account, False

    def _refresh_external_fields(self, db: Session, account: Account, profile: ExternalProfile) -> None:
        """微信昵称/头像可能变化，仅更新这些字段，避免覆盖其他模块并发写入的资料。"""
        values: dict[str, object] = {}
        if profile.display_name:
            values["display_name"] = profile.display_name[:128]
        if profile.avatar_url:
            values["avatar_url"] = profile.avatar_url
        if profile.linking_id:
            values["wechat_union_id"] = profile.linking_id
        if not values:
            return
        db.execute(update(Account).where(Account.id == account.id).values(**values))
        db.commit()
        db.refresh(account)

    def register_with_password(
        self,
        db: Session,
        *,
        handle: str,
        password: str,
        role: str | None,
        display_name: str | None = None,
        phone: str | None = None,
    ) -> Account:
        """注册密码账号，用户名或手机号已被占用时拒绝。"""
        handle = handle.strip()
        phone = phone.strip() if phone else None
        # + 开头的标识保留给手机号。
        if not handle or handle.startswith("+"):
            raise IdentifierConflict("用户名不能为空，也不能以 + 开头。")
        keys = [handle]
        if phone:
            keys.append(phone)

        with self._locks.hold(*keys):
            ensure_unclaimed(db, handle)
            if phone:
                ensure_unclaimed(db, phone)

            account = Account(
                handle=handle,
                phone=phone,
                role=self.parse_role(role),
                password_hash=hash_password(password),
                profile_completed=False,
                display_name=((display_name or "").strip() or handle.split("@")[0])[:128],
                status=AccountStatus.ACTIVE,
            )
            db.add(account)
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise IdentifierConflict() from exc
            db.refresh(account)

        logger.info("account registered with password id=%s role=%s", account.id, account.role)
        return account

    def touch_last_login(self, db: Session, account: Account, *, now: datetime | None = None) -> None:
        """记录最近登录时间。"""
        db.execute(
            update(Account)
            .where(Account.id == account.id)
            .values(last_login_at=now or datetime.now(timezone.utc))
        )
        db.commit()
        db.refresh(account)
