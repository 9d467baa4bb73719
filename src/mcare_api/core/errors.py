"""身份认证领域异常。

服务层只抛出这些异常，由 ``mcare_api.exceptions`` 统一转换为标准错误响应。
异常消息面向客户端，不得包含验证码、密钥或第三方原始报文。
"""

from fastapi import status


class IdentityError(Exception):
    """身份子系统异常基类。"""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "AUTH_ERROR"
    default_message: str = "认证失败。"
    suggestion: str = "请稍后重试，若持续失败请联系管理员。"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class TokenInvalid(IdentityError):
    """令牌格式错误、签名无效或已过期。"""

    status_code = status.HTTP_401_UNAUTHORIZED
    code = "AUTH_TOKEN_INVALID"
    default_message = "登录状态已失效。"
    suggestion = "请重新登录获取新的访问令牌。"


class RateLimited(IdentityError):
    """验证码发送过于频繁。"""

    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "AUTH_CODE_RATE_LIMITED"
    default_message = "验证码发送过于频繁。"
    suggestion = "请等待 60 秒后再重新获取验证码。"


class InvalidOrExpiredCode(IdentityError):
    """验证码错误、过期或已被使用。"""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "AUTH_CODE_INVALID"
    default_message = "验证码无效或已过期。"
    suggestion = "请重新获取验证码后再试。"


class ExternalAuthError(IdentityError):
    """第三方身份提供方返回错误或网络不可达。"""

    status_code = status.HTTP_502_BAD_GATEWAY
    code = "AUTH_EXTERNAL_PROVIDER_FAILED"
    default_message = "第三方登录失败。"
    suggestion = "请重新发起第三方授权登录。"


class AccountNotFound(IdentityError):
    """令牌主体无法映射到任何账号。"""

    status_code = status.HTTP_401_UNAUTHORIZED
    code = "AUTH_ACCOUNT_NOT_FOUND"
    default_message = "账号不存在。"
    suggestion = "请确认账号后重新登录。"


class InvalidCredentials(IdentityError):
    """账号或密码错误。"""

    status_code = status.HTTP_401_UNAUTHORIZED
    code = "AUTH_INVALID_CREDENTIALS"
    default_message = "账号或密码错误。"
    suggestion = "请检查账号与密码后重试。"


class IdentifierConflict(IdentityError):
    """注册时标识已被其他账号占用。"""

    status_code = status.HTTP_409_CONFLICT
    code = "AUTH_IDENTIFIER_CONFLICT"
    default_message = "账号标识已被占用。"
    suggestion = "请更换用户名或手机号后重试。"
