"""
异常定义

错误分类：
- SetupError: 配置 / 目标系列不存在，运行开始前即终止
- TransportError: 会话（浏览器 / 网络）中途失效，可通过重启会话恢复
- ExtractionFailure: 数据源没有返回可解析的记录，记录后继续
- ImageFailure: 图片下载 / 转换 / 存储失败，记录后按回退策略处理
- PersistenceFailure: 目录写入被拒绝，记录后继续
"""
from typing import Optional


# 浏览器 / 连接失效时异常信息中出现的片段
TRANSPORT_ERROR_MARKERS = (
    "Connection closed",
    "detached Frame",
    "Target closed",
    "Protocol error",
    "Target page, context or browser has been closed",
    "Browser has been closed",
)


class IngestError(Exception):
    """采集管道异常基类"""


class SetupError(IngestError):
    """启动失败（配置缺失、目标系列不存在等），致命"""


class LaunchFailed(SetupError):
    """会话（浏览器 / HTTP 客户端）启动失败"""


class TransportError(IngestError):
    """会话在使用中失效"""


class ExtractionFailure(IngestError):
    """单条记录提取失败"""

    kind = "extraction"

    def __init__(self, message: str, identifier: Optional[str] = None):
        super().__init__(message)
        self.identifier = identifier


class NotFound(ExtractionFailure):
    """数据源中不存在该记录"""

    kind = "not_found"


class ParseFailure(ExtractionFailure):
    """页面 / 响应无法解析为记录"""

    kind = "parse"


class ExtractionTimeout(ExtractionFailure):
    """提取超时（与其他提取失败同样处理）"""

    kind = "timeout"


class ImageFailure(IngestError):
    """图片处理失败，stage 标明失败阶段: download / transform / store"""

    def __init__(self, stage: str, message: str, source_url: Optional[str] = None):
        super().__init__(f"[{stage}] {message}")
        self.stage = stage
        self.source_url = source_url
        self.reason = message


class DownloadFailed(ImageFailure):
    """图片下载失败（HTTP 非 2xx 或网络错误）"""

    def __init__(self, message: str, source_url: Optional[str] = None):
        super().__init__("download", message, source_url)


class PersistenceFailure(IngestError):
    """目录写入失败"""


def is_transport_error(exc: BaseException) -> bool:
    """判断异常是否属于传输层失效"""
    if isinstance(exc, TransportError):
        return True
    message = str(exc)
    return any(marker in message for marker in TRANSPORT_ERROR_MARKERS)
