"""
检查点控制器

以 (collection, language, page) 粒度记录运行进度，支持崩溃后从中断处继续。
每次更新都是整份检查点的原子覆盖；检查点缺失或损坏一律视为全新运行。
"""
from typing import List, Optional, Tuple

from loguru import logger
from pydantic import ValidationError

from core.models import CrawlCheckpoint, now_iso
from core.persistence import DocumentStore


class CheckpointController:
    """
    检查点控制器（基于 DocumentStore 实现）

    驱动器在启动时调用一次 load() 计算起点，每完成一页调用一次 advance()，
    单元完成时以 done=True 再调用一次。
    """

    def __init__(self, store: DocumentStore):
        self.store = store

    @property
    def location(self) -> str:
        return self.store.location

    def load(self) -> CrawlCheckpoint:
        """加载检查点，缺失或损坏时返回空状态"""
        data = self.store.load()
        if not data:
            return CrawlCheckpoint()
        try:
            checkpoint = CrawlCheckpoint.model_validate(data)
        except ValidationError as e:
            logger.warning("Corrupt checkpoint in {}, starting fresh: {}", self.location, e)
            return CrawlCheckpoint()
        logger.info(
            "Checkpoint loaded: {} ({}) page {}{}",
            checkpoint.collection, checkpoint.language, checkpoint.page,
            " [done]" if checkpoint.done else "",
        )
        return checkpoint

    def advance(
        self,
        collection: str,
        language: str,
        page: int,
        collection_index: int = 0,
        done: bool = False,
    ) -> bool:
        """整体覆盖写入新的检查点"""
        checkpoint = CrawlCheckpoint(
            collection=collection,
            collection_index=collection_index,
            language=language,
            page=page,
            done=done,
            updated_at=now_iso(),
        )
        ok = self.store.save(checkpoint.model_dump())
        if ok:
            logger.debug("Checkpoint saved: {} ({}) page {}", collection, language, page)
        else:
            logger.error("Save checkpoint failed: {} ({}) page {}", collection, language, page)
        return ok

    def clear(self) -> bool:
        """清除检查点"""
        ok = self.store.delete()
        if ok:
            logger.info("Checkpoint cleared: {}", self.location)
        return ok

    def exists(self) -> bool:
        """检查点是否存在"""
        return self.store.exists()


def resolve_resume_point(
    checkpoint: CrawlCheckpoint,
    codes: List[str],
    languages: List[str],
) -> Tuple[int, int, int]:
    """
    根据检查点计算起点

    Args:
        checkpoint: 已加载的检查点
        codes: 本次运行的系列代码（有序）
        languages: 本次运行的语言（有序）

    Returns:
        (collection_index, language_index, start_page)，start_page 从 1 开始
    """
    if checkpoint.is_fresh:
        return 0, 0, 1

    upper_codes = [code.upper() for code in codes]
    if checkpoint.collection.upper() in upper_codes:
        index = upper_codes.index(checkpoint.collection.upper())
    elif 0 <= checkpoint.collection_index < len(codes):
        index = checkpoint.collection_index
    else:
        logger.warning("Checkpoint collection {} not in this run, starting from the top", checkpoint.collection)
        return 0, 0, 1

    lowered = [lang.lower() for lang in languages]
    language = (checkpoint.language or "").lower()
    if language not in lowered:
        # 语言不在本次运行范围内：从该系列的第一个语言开始
        return index, 0, 1
    lang_index = lowered.index(language)

    if checkpoint.done:
        lang_index += 1
        if lang_index >= len(languages):
            return index + 1, 0, 1
        return index, lang_index, 1
    return index, lang_index, checkpoint.page + 1


def resolve_start_override(
    codes: List[str],
    start_code: Optional[str] = None,
    start_index: Optional[int] = None,
) -> Optional[int]:
    """
    解析操作员指定的起点（--start / --start-index），优先于检查点

    Returns:
        系列下标；未指定时返回 None

    Raises:
        ValueError: 系列不存在或下标无效
    """
    if start_code:
        upper_codes = [code.upper() for code in codes]
        if start_code.upper() not in upper_codes:
            raise ValueError(f"Collection {start_code} not found in list")
        return upper_codes.index(start_code.upper())
    if start_index is not None:
        if start_index < 0 or start_index >= len(codes):
            raise ValueError(f"Invalid start index: {start_index}")
        return start_index
    return None
