"""服务层能力导出集合。"""

from mcare_api.services.auth_flow import AuthenticationOrchestrator, AuthResult
from mcare_api.services.identity import IdentityResolver, compose_phone
from mcare_api.services.local_auth import hash_password, verify_password
from mcare_api.services.sms import LoggingSmsSender, SmsSender
from mcare_api.services.verification_codes import (
    CodeSweeper,
    InMemoryVerificationCodeStore,
    RedisVerificationCodeStore,
    VerificationCodeStore,
    build_code_store,
    generate_code,
)
from mcare_api.services.wechat import ExternalProfile, WeChatIdentityBroker

__all__ = [
    "AuthenticationOrchestrator",
    "AuthResult",
    "IdentityResolver",
    "compose_phone",
    "hash_password",
    "verify_password",
    "SmsSender",
    "LoggingSmsSender",
    "VerificationCodeStore",
    "InMemoryVerificationCodeStore",
    "RedisVerificationCodeStore",
    "CodeSweeper",
    "build_code_store",
    "generate_code",
    "ExternalProfile",
    "WeChatIdentityBroker",
]
