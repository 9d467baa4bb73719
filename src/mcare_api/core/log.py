"""日志初始化与脱敏工具。"""

import logging

from mcare_api.core.config import get_settings


def setup_logging() -> None:
    """初始化日志输出格式与级别。"""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def mask_phone(region: str, phone: str) -> str:
    """手机号脱敏，仅保留区号与末四位。"""
    tail = phone[-4:] if len(phone) > 4 else ""
    return f"{region} ****{tail}"
