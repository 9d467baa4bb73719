"""账号身份模型。"""

from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from mcare_api.models.base import Base, IntegerPrimaryKeyMixin, TimestampMixin
from mcare_api.models.enums import AccountRole, AccountStatus


class Account(Base, IntegerPrimaryKeyMixin, TimestampMixin):
    """账号实体，三种登录渠道收敛后的身份锚点。

    本模块只维护身份相关字段；资料类字段由业务模块各自维护。
    """

    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint(
            "handle IS NOT NULL OR phone IS NOT NULL OR wechat_open_id IS NOT NULL",
            name="identifier_present",
        ),
    )

    # 用户名或邮箱，可为空（手机号/微信注册账号）。
    handle: Mapped[str | None] = mapped_column(String(256), unique=True)
    # 区号 + 号码拼接后的手机号，如 +15551234567。
    phone: Mapped[str | None] = mapped_column(String(32), unique=True)
    # 微信 openid。
    wechat_open_id: Mapped[str | None] = mapped_column(String(128), unique=True)
    # 微信 unionid，跨应用关联用，不参与登录查找。
    wechat_union_id: Mapped[str | None] = mapped_column(String(128))
    # 账号角色（MOTHER/MATRON）。
    role: Mapped[str] = mapped_column(String(32), nullable=False, default=AccountRole.MOTHER)
    # 口令哈希，手机号/微信账号可为空。
    password_hash: Mapped[str | None] = mapped_column(String(256))
    # 是否已补全业务资料。
    profile_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # 展示名。
    display_name: Mapped[str] = mapped_column(String(128), nullable=False)
    # 头像地址。
    avatar_url: Mapped[str | None] = mapped_column(String(512))
    # 账号状态。
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=AccountStatus.ACTIVE)
    # 最近一次登录时间。
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
