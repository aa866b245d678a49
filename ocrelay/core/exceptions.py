"""
中继层的异常类型
"""
from typing import Optional


class RelayError(Exception):
    """所有中继异常的基类"""


class ConfigError(RelayError):
    """启动配置缺失或非法"""


class EventDecodeError(RelayError):
    """SSE 帧无法解码为已知事件"""

    def __init__(self, message: str, raw: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.raw = raw


class SinkError(RelayError):
    """向目标消息（Telegram 等）写入失败"""

    def __init__(self, message: str, content_unchanged: bool = False):
        super().__init__(message)
        self.message = message
        # 内容未变化，属于无害的空操作
        self.content_unchanged = content_unchanged


class OpenCodeError(RelayError):
    """OpenCode 接口返回非 2xx"""

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(f"{status_code}: {message}" if status_code else message)
        self.message = message
        self.status_code = status_code


class TelegramError(RelayError):
    """Telegram Bot API 返回 ok=false"""

    def __init__(self, description: str, error_code: int = 0):
        super().__init__(description)
        self.description = description
        self.error_code = error_code

    @property
    def not_modified(self) -> bool:
        return "message is not modified" in self.description
