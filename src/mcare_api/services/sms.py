"""短信下发通道。"""

import logging
from typing import Protocol

from mcare_api.core.log import mask_phone

logger = logging.getLogger(__name__)


class SmsSender(Protocol):
    """验证码下发协议，便于替换为真实短信服务商。"""

    def send_code(self, region: str, phone: str, code: str) -> None: ...


class LoggingSmsSender:
    """开发环境下发实现：只写日志，验证码仅在 DEBUG 级别输出。"""

    def send_code(self, region: str, phone: str, code: str) -> None:
        logger.info("sms dispatched phone=%s", mask_phone(region, phone))
        logger.debug("sms verification code phone=%s %s code=%s", region, phone, code)
