"""
核心模块

包含采集管道组件：
- session: 采集会话（浏览器 / HTTP 句柄，失效自动重启）
- rate_limiter: 请求速率限制
- images: 图片处理管道
- catalog / storage: 目录写入与 SQLite 存储
- failure_log: 失败日志（可重放）
- checkpoint: 检查点控制器（断点续传）
- driver: 采集驱动器
- reconciliation / repair: 对账扫描与图片修复
"""
from .errors import (
    IngestError,
    SetupError,
    LaunchFailed,
    TransportError,
    ExtractionFailure,
    NotFound,
    ParseFailure,
    ExtractionTimeout,
    ImageFailure,
    DownloadFailed,
    PersistenceFailure,
)
from .rate_limiter import RateLimiter
from .storage import CatalogStore
from .persistence import DocumentStore, JsonDocumentStore, CatalogDocumentStore, make_document_store
from .checkpoint import CheckpointController
from .failure_log import FailureLog
from .session import CrawlSession, PlaywrightLauncher, HttpLauncher
from .asset_store import AssetStore, LocalAssetStore
from .images import ImagePipeline
from .catalog import CatalogWriter
from .reconciliation import ReconciliationScanner
from .repair import ImageRepairer

__all__ = [
    'IngestError',
    'SetupError',
    'LaunchFailed',
    'TransportError',
    'ExtractionFailure',
    'NotFound',
    'ParseFailure',
    'ExtractionTimeout',
    'ImageFailure',
    'DownloadFailed',
    'PersistenceFailure',
    'RateLimiter',
    'CatalogStore',
    'DocumentStore',
    'JsonDocumentStore',
    'CatalogDocumentStore',
    'make_document_store',
    'CheckpointController',
    'FailureLog',
    'CrawlSession',
    'PlaywrightLauncher',
    'HttpLauncher',
    'AssetStore',
    'LocalAssetStore',
    'ImagePipeline',
    'CatalogWriter',
    'ReconciliationScanner',
    'ImageRepairer',
]
