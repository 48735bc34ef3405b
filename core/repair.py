"""
图片修复（独立命令，显式调用）

根据对账报告中的 missing 列表，对仍保存外部源地址的记录重新执行图片管道，
成功后以新的资源引用 upsert 记录。
"""
from typing import Dict, Optional

from loguru import logger

from core.catalog import CatalogWriter
from core.errors import ImageFailure, PersistenceFailure
from core.images import ImagePipeline
from core.models import CardRecord
from core.reconciliation import ReconciliationReport
from core.storage import CatalogStore


class ImageRepairer:
    """按对账报告补齐缺失图片"""

    def __init__(self, pipeline: ImagePipeline, catalog: CatalogStore, writer: Optional[CatalogWriter] = None):
        self.pipeline = pipeline
        self.catalog = catalog
        self.writer = writer or CatalogWriter(catalog)
        self.stats = {"candidates": 0, "repaired": 0, "skipped": 0, "failed": 0}

    def is_external(self, image_url: Optional[str]) -> bool:
        """是否仍指向外部源（而非本地资源）"""
        if not image_url or not image_url.startswith(("http://", "https://")):
            return False
        base_url = self.pipeline.asset_store.public_url("")
        return not (base_url and image_url.startswith(base_url))

    async def repair(self, report: ReconciliationReport, limit: Optional[int] = None) -> Dict[str, int]:
        """
        修复报告中的缺失图片

        Args:
            report: 对账报告
            limit: 最多处理的条数

        Returns:
            统计信息
        """
        for pair in report.pairs:
            for missing in pair.missing:
                if limit is not None and self.stats["candidates"] >= limit:
                    logger.info(f"⏹️  达到修复上限: {limit}")
                    return self.stats
                self.stats["candidates"] += 1

                key = (pair.collection, missing.number, pair.language)
                current = self.catalog.get_card(key)
                if current is None:
                    logger.warning(f"⚠️  记录已不存在: {'/'.join(key)}")
                    self.stats["skipped"] += 1
                    continue

                source_url = current.get("image_url")
                if not self.is_external(source_url):
                    logger.debug(f"No external source for {'/'.join(key)}, skipped")
                    self.stats["skipped"] += 1
                    continue

                try:
                    ref = await self.pipeline.process(source_url, pair.collection, pair.language, missing.number)
                    self.writer.upsert(CardRecord(
                        collection_code=pair.collection,
                        number=missing.number,
                        language=pair.language,
                        name=current.get("name") or "",
                        rarity=current.get("rarity"),
                        image_url=ref.public_url,
                        attributes=current.get("attributes") or {},
                    ))
                except (ImageFailure, PersistenceFailure) as e:
                    logger.error(f"❌ 修复失败 {'/'.join(key)}: {e}")
                    self.stats["failed"] += 1
                    continue

                self.stats["repaired"] += 1
                logger.success(f"✅ 已修复: {'/'.join(key)} → {ref.path}")

        return self.stats
