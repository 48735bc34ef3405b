"""
数据模型

持久化文档（检查点、失败日志）与目录记录均使用 pydantic 定义，
便于 JSON 序列化以及加载时校验（校验失败视为空状态）。
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def now_iso() -> str:
    return datetime.now().isoformat()


# ============================================================================
# 目录记录
# ============================================================================

class CardRecord(BaseModel):
    """目录中的一张卡牌，键为 (collection_code, number, language)"""
    collection_code: str
    number: str
    language: str
    name: str = ""
    rarity: Optional[str] = None
    image_url: Optional[str] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)

    @property
    def key(self) -> tuple:
        return (self.collection_code, self.number, self.language)


class ExtractedCard(BaseModel):
    """提取器返回的结构化记录（尚未关联系列 / 图片）"""
    number: str
    name: str = ""
    language: Optional[str] = None
    rarity: Optional[str] = None
    image_url: Optional[str] = None
    source_url: Optional[str] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)

    def to_record(self, collection_code: str, language: str, image_url: Optional[str]) -> CardRecord:
        return CardRecord(
            collection_code=collection_code,
            number=self.number,
            language=language.lower(),
            name=self.name,
            rarity=self.rarity,
            image_url=image_url,
            attributes=dict(self.attributes),
        )


class AssetRef(BaseModel):
    """已存储图片的引用"""
    model_config = ConfigDict(frozen=True)

    path: str
    public_url: str


# ============================================================================
# 检查点
# ============================================================================

class CrawlCheckpoint(BaseModel):
    """
    运行进度

    page 为该 (collection, language) 单元内最后一个已完成的页码，0 表示尚未完成任何页；
    done 为 True 表示该单元已完成。
    """
    collection: Optional[str] = None
    collection_index: int = 0
    language: Optional[str] = None
    page: int = 0
    done: bool = False
    updated_at: Optional[str] = None

    @property
    def is_fresh(self) -> bool:
        return self.collection is None


# ============================================================================
# 失败日志
# ============================================================================

class FailureKind(str, Enum):
    """失败分类"""
    EXTRACTION = "extraction"
    NOT_FOUND = "not_found"
    PARSE = "parse"
    TIMEOUT = "timeout"
    TRANSPORT = "transport"
    PERSISTENCE = "persistence"
    UNIT = "unit"


class FailureLogEntry(BaseModel):
    """一次失败的提取尝试（自包含，可单独重试）"""
    model_config = ConfigDict(frozen=True)

    identifier: str
    collection: str
    language: str
    kind: FailureKind = FailureKind.EXTRACTION
    message: str = ""
    timestamp: str = Field(default_factory=now_iso)


class ImageFailureEntry(BaseModel):
    """一次失败的图片处理"""
    model_config = ConfigDict(frozen=True)

    item_name: str
    item_number: str
    collection: str
    language: str
    source_url: Optional[str] = None
    stage: str = "download"
    message: str = ""
    timestamp: str = Field(default_factory=now_iso)


class FailureStats(BaseModel):
    processed: int = 0
    errors: int = 0
    image_errors: int = 0


class FailureLogDocument(BaseModel):
    """失败日志持久化文档"""
    started_at: str = Field(default_factory=now_iso)
    completed_at: Optional[str] = None
    entries: List[FailureLogEntry] = Field(default_factory=list)
    image_failures: List[ImageFailureEntry] = Field(default_factory=list)
    stats: FailureStats = Field(default_factory=FailureStats)


# ============================================================================
# 运行状态（驱动器内部）
# ============================================================================

class UnitState(str, Enum):
    """(collection, language) 单元状态"""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED_RETRYING = "failed_retrying"


class ItemStatus(str, Enum):
    """单条记录处理结果"""
    SAVED = "saved"
    OTHER_LANGUAGE = "other_language"
    FAILED = "failed"


@dataclass
class ItemOutcome:
    """单条记录的处理结果（替代逐条 try/except 的控制流）"""
    identifier: str
    status: ItemStatus
    record: Optional[CardRecord] = None
    error: Optional[Exception] = None
    image_failed: bool = False

    @property
    def ok(self) -> bool:
        return self.status != ItemStatus.FAILED


@dataclass
class UnitReport:
    """单元处理统计"""
    collection: str
    language: str
    state: UnitState = UnitState.PENDING
    pages: int = 0
    processed: int = 0
    saved: int = 0
    other_language: int = 0
    errors: int = 0
    image_errors: int = 0
    retries: int = 0
    last_error: Optional[str] = None


@dataclass
class RunSummary:
    """整次运行统计"""
    units: List[UnitReport] = field(default_factory=list)
    session_restarts: int = 0
    cancelled: bool = False
    started_at: str = field(default_factory=now_iso)
    finished_at: Optional[str] = None

    @property
    def processed(self) -> int:
        return sum(unit.processed for unit in self.units)

    @property
    def saved(self) -> int:
        return sum(unit.saved for unit in self.units)

    @property
    def errors(self) -> int:
        return sum(unit.errors for unit in self.units)

    @property
    def image_errors(self) -> int:
        return sum(unit.image_errors for unit in self.units)
