"""访问令牌签发与校验工具。"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
import math
import re
from typing import Any

import jwt
from jwt import InvalidTokenError, PyJWTError

from mcare_api.core.config import Settings
from mcare_api.core.errors import TokenInvalid

logger = logging.getLogger(__name__)

_REQUIRED_CLAIMS = ["sub", "iat", "exp"]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class IssuedToken:
    """签发结果。"""

    # 紧凑格式的签名令牌。
    token: str
    # 令牌主体（用户名、手机号或第三方 openid）。
    subject: str
    # 签发时间（UTC）。
    issued_at: datetime
    # 过期时间（UTC）。
    expires_at: datetime

    def expires_in(self, now: datetime | None = None) -> int:
        """距离过期的剩余秒数，默认以签发时刻计算。"""
        current = now or self.issued_at
        return max(0, int((self.expires_at - current).total_seconds()))


class TokenCodec:
    """无状态令牌编解码器。

    令牌只携带 sub/iat/exp，主体是不透明字符串，三种登录渠道共用同一校验路径。
    过期判断使用注入的时钟，不做额外的时钟容错。
    """

    def __init__(
        self,
        secret: str,
        *,
        ttl_seconds: int,
        algorithm: str = "HS256",
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        if not secret:
            raise ValueError("token signing secret must not be empty")
        if ttl_seconds <= 0:
            raise ValueError("token ttl must be positive")
        if not algorithm.upper().startswith("HS"):
            raise ValueError(f"unsupported token algorithm: {algorithm}")
        self._secret = secret
        self._algorithm = algorithm.upper()
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenCodec":
        return cls(
            settings.auth_jwt_secret,
            ttl_seconds=settings.auth_access_token_ttl_seconds,
            algorithm=settings.auth_jwt_algorithm,
        )

    @property
    def ttl_seconds(self) -> int:
        return int(self._ttl.total_seconds())

    def issue(self, subject: str) -> IssuedToken:
        """为主体签发新令牌。

        exp 向上取整到秒，令牌不会早于签发时刻 + TTL 失效；返回的 expires_at 与 exp 声明一致。
        """
        now = self._clock()
        exp = math.ceil((now + self._ttl).timestamp())
        claims: dict[str, Any] = {
            "sub": subject,
            "iat": int(now.timestamp()),
            "exp": exp,
        }
        token = jwt.encode(claims, self._secret, algorithm=self._algorithm)
        expires_at = datetime.fromtimestamp(exp, timezone.utc)
        return IssuedToken(token=token, subject=subject, issued_at=now, expires_at=expires_at)

    def _decode(self, token: str) -> dict[str, Any]:
        try:
            claims = jwt.decode(
                token,
                key=self._secret,
                algorithms=[self._algorithm],
                # 过期时间由注入时钟判断，保证测试与运行时语义一致。
                options={"verify_exp": False, "verify_iat": False, "require": _REQUIRED_CLAIMS},
            )
        except InvalidTokenError as exc:
            raise TokenInvalid() from exc

        subject = claims.get("sub")
        exp = claims.get("exp")
        if not isinstance(subject, str) or not subject or not isinstance(exp, int):
            raise TokenInvalid()
        if self._clock().timestamp() >= exp:
            raise TokenInvalid()
        return claims

    def verify(self, token: str) -> str:
        """校验令牌并返回主体。"""
        return self._decode(token)["sub"]

    def refresh(self, token: str) -> IssuedToken | None:
        """滑动续期：校验通过后以相同主体重新签发。

        校验失败抛出 TokenInvalid；其余签发错误仅记录日志并返回 None，由调用方决定策略。
        """
        subject = self.verify(token)
        try:
            return self.issue(subject)
        except (PyJWTError, TypeError, ValueError):
            logger.exception("token refresh failed")
            return None


def _is_placeholder_token(token: str) -> bool:
    return ("{{" in token and "}}" in token) or ("${" in token and "}" in token)


def extract_bearer_token(authorization: str | None) -> str:
    """从 Authorization 头中提取 Bearer token，兼容重复头被逗号拼接的场景。"""
    if not authorization:
        raise TokenInvalid()
    tokens = re.findall(r"Bearer\s+([^,\s]+)", authorization, flags=re.IGNORECASE)
    for candidate in reversed(tokens):
        token = candidate.strip()
        # 联调工具未替换的变量占位符直接跳过。
        if token and not _is_placeholder_token(token):
            return token
    raise TokenInvalid()
