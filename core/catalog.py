"""
目录写入

以 (collection_code, number, language) 为键的幂等 upsert。
"""
from typing import Optional

from loguru import logger

from config import CollectionTarget
from core.models import CardRecord
from core.storage import CatalogStore


class CatalogWriter:
    """目录写入器（last write wins，属性字典整体替换）"""

    def __init__(self, store: CatalogStore):
        self.store = store
        self.stats = {"inserted": 0, "updated": 0, "unchanged": 0}

    def upsert(self, record: CardRecord) -> str:
        """
        写入一条卡牌记录

        Returns:
            "inserted" / "updated" / "unchanged"

        Raises:
            PersistenceFailure: 存储拒绝写入
        """
        result = self.store.upsert_card(
            record.key,
            {
                "name": record.name,
                "rarity": record.rarity,
                "image_url": record.image_url,
                "attributes": record.attributes,
            },
        )
        self.stats[result] += 1
        logger.debug("Card {} {}", "/".join(record.key), result)
        return result

    def ensure_collection(self, target: CollectionTarget, image_url: Optional[str] = None):
        """写入系列信息（已有系列图时不被空值覆盖）"""
        self.store.upsert_collection({
            "code": target.code,
            "name": target.name or target.code,
            "type": target.type,
            "release_date": target.release_date,
            "expected_count": target.expected_count,
            "image_url": image_url,
        })
