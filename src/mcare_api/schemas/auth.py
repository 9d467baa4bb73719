"""登录、注册与验证码请求结构。"""

from datetime import datetime

from pydantic import BaseModel, Field

from mcare_api.schemas.common import BaseSchema

_ROLE_DESCRIPTION = "账号角色：MOTHER（妈妈）或 MATRON（月嫂），无法识别时按 MOTHER 处理。"


class PasswordLoginRequest(BaseModel):
    """密码登录请求。"""

    username: str = Field(min_length=1, max_length=256, description="用户名、邮箱或手机号。", examples=["alice@example.com"])
    password: str = Field(min_length=1, max_length=128, description="登录密码。", examples=["StrongPassw0rd!"])


class RegisterRequest(BaseModel):
    """密码账号注册请求。"""

    username: str = Field(
        min_length=3,
        max_length=256,
        # 不允许以 + 开头，避免与手机号标识混淆。
        pattern=r"^[^+\s][^\s]*$",
        description="用户名或邮箱。",
        examples=["alice@example.com"],
    )
    password: str = Field(min_length=8, max_length=128, description="登录密码。", examples=["StrongPassw0rd!"])
    role: str = Field(default="MOTHER", max_length=32, description=_ROLE_DESCRIPTION)
    display_name: str | None = Field(default=None, min_length=1, max_length=128, description="展示名。")
    phone: str | None = Field(
        default=None,
        pattern=r"^\+\d{6,20}$",
        description="可选手机号（区号 + 号码），绑定后可用于密码登录。",
        examples=["+8613800000000"],
    )


class PhoneSendCodeRequest(BaseModel):
    """发送短信验证码请求。"""

    country_code: str = Field(pattern=r"^\+\d{1,4}$", description="国家/地区区号。", examples=["+86"])
    phone_number: str = Field(pattern=r"^\d{4,15}$", description="手机号码（不含区号）。", examples=["13800000000"])


class PhoneVerifyRequest(BaseModel):
    """短信验证码登录请求。"""

    country_code: str = Field(pattern=r"^\+\d{1,4}$", description="国家/地区区号。", examples=["+86"])
    phone_number: str = Field(pattern=r"^\d{4,15}$", description="手机号码（不含区号）。", examples=["13800000000"])
    verification_code: str = Field(pattern=r"^\d{6}$", description="6 位数字验证码。", examples=["123456"])
    role: str = Field(max_length=32, description=_ROLE_DESCRIPTION)
    name: str | None = Field(default=None, max_length=128, description="新用户展示名，可选。")


class WeChatLoginRequest(BaseModel):
    """微信授权登录请求。"""

    code: str = Field(min_length=1, max_length=256, description="微信授权码。")
    role: str = Field(max_length=32, description=_ROLE_DESCRIPTION)


class AccountSummary(BaseSchema):
    """账号概要。"""

    id: int = Field(description="账号 ID。")
    display_name: str = Field(description="展示名。")
    handle: str | None = Field(default=None, description="用户名或邮箱。")
    phone: str | None = Field(default=None, description="手机号（区号 + 号码）。")
    avatar_url: str | None = Field(default=None, description="头像地址。")
    role: str = Field(description="账号角色。")
    profile_completed: bool = Field(description="是否已补全资料。")
    created_at: datetime | None = Field(default=None, description="创建时间。")


class AuthLoginData(BaseSchema):
    """登录结果结构。"""

    access_token: str = Field(description="访问令牌。")
    token_type: str = Field(default="bearer", description="令牌类型。")
    expires_at: datetime = Field(description="令牌过期时间（UTC）。")
    expires_in: int = Field(description="距过期剩余秒数。")
    is_new_account: bool = Field(default=False, description="本次登录是否新建了账号。")
    account: AccountSummary = Field(description="账号概要。")


class PhoneSendCodeData(BaseSchema):
    """发送验证码结果。"""

    success: bool = Field(description="是否已发送。")
    message: str = Field(description="提示信息。")
    expires_in: int = Field(description="验证码有效期（秒）。")


class TokenRefreshData(BaseSchema):
    """令牌续期结果。"""

    access_token: str = Field(description="新的访问令牌。")
    token_type: str = Field(default="bearer", description="令牌类型。")
    expires_at: datetime = Field(description="令牌过期时间（UTC）。")
    expires_in: int = Field(description="距过期剩余秒数。")
