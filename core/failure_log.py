"""
失败日志

追加写入、每次记录立即整体落盘（write-through），进程崩溃不会丢失已记录的失败。
默认加载并延续上一次的日志；startFresh 时丢弃旧记录。
重放模式（--retry-failed）只重试日志中的提取失败条目。
"""
from typing import Dict, List, Optional, Tuple

from loguru import logger
from pydantic import ValidationError

from core.models import (
    FailureKind,
    FailureLogDocument,
    FailureLogEntry,
    ImageFailureEntry,
    now_iso,
)
from core.persistence import DocumentStore


class FailureLog:
    """
    失败日志

    Example:
        log = FailureLog(JsonDocumentStore(path))
        log.load()
        log.record_extraction_failure(url, "SOR", "fr", "No card data extracted")
    """

    def __init__(self, store: DocumentStore):
        self.store = store
        self.document = FailureLogDocument()

    @property
    def location(self) -> str:
        return self.store.location

    @property
    def entries(self) -> List[FailureLogEntry]:
        return list(self.document.entries)

    @property
    def image_failures(self) -> List[ImageFailureEntry]:
        return list(self.document.image_failures)

    def load(self, fresh: bool = False) -> "FailureLog":
        """加载已有日志（fresh=True 时丢弃）"""
        if fresh:
            return self.start_fresh()
        data = self.store.load()
        if data:
            try:
                self.document = FailureLogDocument.model_validate(data)
                logger.info(
                    "Failure log loaded: {} entries, {} image failures",
                    len(self.document.entries), len(self.document.image_failures),
                )
                return self
            except ValidationError as e:
                logger.warning("Corrupt failure log in {}, starting fresh: {}", self.location, e)
        self.document = FailureLogDocument()
        return self

    def start_fresh(self) -> "FailureLog":
        """丢弃旧记录并立即落盘"""
        self.document = FailureLogDocument()
        self._save()
        logger.info("Failure log reset: {}", self.location)
        return self

    def _save(self):
        if not self.store.save(self.document.model_dump(mode="json")):
            logger.error("Failed to persist failure log: {}", self.location)

    def record_extraction_failure(
        self,
        identifier: str,
        collection: str,
        language: str,
        reason: str,
        kind: FailureKind = FailureKind.EXTRACTION,
    ) -> FailureLogEntry:
        """记录一次提取失败"""
        entry = FailureLogEntry(
            identifier=identifier,
            collection=collection,
            language=language,
            kind=kind,
            message=reason,
        )
        self.document.entries.append(entry)
        self.document.stats.errors += 1
        self._save()
        return entry

    def record_image_failure(
        self,
        item_name: str,
        item_number: str,
        collection: str,
        language: str,
        source_url: Optional[str],
        reason: str,
        stage: str = "download",
    ) -> ImageFailureEntry:
        """记录一次图片处理失败"""
        entry = ImageFailureEntry(
            item_name=item_name,
            item_number=item_number,
            collection=collection,
            language=language,
            source_url=source_url,
            stage=stage,
            message=reason,
        )
        self.document.image_failures.append(entry)
        self.document.stats.image_errors += 1
        self._save()
        return entry

    def record_processed(self, count: int):
        """累计处理数"""
        if count <= 0:
            return
        self.document.stats.processed += count
        self._save()

    def mark_completed(self):
        self.document.completed_at = now_iso()
        self._save()

    def replay_queue(self) -> List[FailureLogEntry]:
        """
        需要重试的条目

        单元级条目（identifier 为系列定位符）不参与重放；
        同一 (identifier, collection, language) 只保留最后一次。
        """
        latest: Dict[Tuple[str, str, str], FailureLogEntry] = {}
        for entry in self.document.entries:
            if entry.kind == FailureKind.UNIT:
                continue
            key = (entry.identifier, entry.collection, entry.language)
            latest.pop(key, None)
            latest[key] = entry
        return list(latest.values())

    def finish_replay(self, still_failing: List[FailureLogEntry], recovered: int):
        """
        重放结束后改写日志：提取失败只保留仍失败的条目，图片失败保留
        """
        unit_entries = [e for e in self.document.entries if e.kind == FailureKind.UNIT]
        self.document = FailureLogDocument(
            started_at=now_iso(),
            completed_at=now_iso(),
            entries=unit_entries + list(still_failing),
            image_failures=self.document.image_failures,
        )
        self.document.stats.processed = recovered
        self.document.stats.errors = len(self.document.entries)
        self.document.stats.image_errors = len(self.document.image_failures)
        self._save()

    def summary(self) -> Dict[str, object]:
        """统计摘要"""
        units = sorted({
            f"{entry.collection} ({entry.language})"
            for entry in self.document.entries
        })
        return {
            "entries": len(self.document.entries),
            "image_failures": len(self.document.image_failures),
            "processed": self.document.stats.processed,
            "errors": self.document.stats.errors,
            "image_errors": self.document.stats.image_errors,
            "units_with_errors": units,
        }
