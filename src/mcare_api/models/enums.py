"""领域枚举定义。"""

from enum import StrEnum


class AccountRole(StrEnum):
    """账号角色。"""

    MOTHER = "MOTHER"  # 需求方：预约月嫂服务的妈妈。
    MATRON = "MATRON"  # 服务方：提供母婴护理服务的月嫂。


class AccountStatus(StrEnum):
    """账号状态。"""

    ACTIVE = "active"  # 正常可登录。
    DISABLED = "disabled"  # 已禁用，拒绝任何渠道登录。


class LoginChannel(StrEnum):
    """登录渠道。"""

    PASSWORD = "password"  # 用户名/手机号 + 密码。
    PHONE = "phone"  # 手机号 + 短信验证码。
    WECHAT = "wechat"  # 微信授权登录。
