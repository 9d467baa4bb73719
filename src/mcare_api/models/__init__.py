"""ORM 模型导出集合。"""

from mcare_api.models.account import Account

__all__ = ["Account"]
