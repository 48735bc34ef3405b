"""
运行状态持久化端口

检查点与失败日志只依赖 DocumentStore 的 load / save / delete，
可在 JSON 文件与目录数据库（documents 表）之间切换。
"""
import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger

from core.storage import CatalogStore


class DocumentStore(ABC):
    """单个 JSON 文档的存取"""

    @property
    @abstractmethod
    def location(self) -> str:
        """存储位置描述（用于日志）"""

    @abstractmethod
    def load(self) -> Optional[Dict[str, Any]]:
        """读取文档；不存在或损坏时返回 None"""

    @abstractmethod
    def save(self, data: Dict[str, Any]) -> bool:
        """整体原子覆盖写入"""

    @abstractmethod
    def delete(self) -> bool:
        """删除文档"""

    def exists(self) -> bool:
        return self.load() is not None


class JsonDocumentStore(DocumentStore):
    """JSON 文件存储（写临时文件后 os.replace，保证不出现半写状态）"""

    def __init__(self, path: Path):
        self.path = Path(path)

    @property
    def location(self) -> str:
        return str(self.path)

    def load(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Corrupt state file {}, starting fresh: {}", self.path, e)
            return None
        if not isinstance(data, dict):
            logger.warning("Unexpected state document in {}, starting fresh", self.path)
            return None
        return data

    def save(self, data: Dict[str, Any]) -> bool:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
            return True
        except OSError as e:
            logger.error("Failed to write state file {}: {}", self.path, e)
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            return False

    def delete(self) -> bool:
        if not self.path.exists():
            return False
        self.path.unlink()
        return True


class CatalogDocumentStore(DocumentStore):
    """存放在目录数据库 documents 表中的文档"""

    def __init__(self, store: CatalogStore, key: str):
        self.store = store
        self.key = key

    @property
    def location(self) -> str:
        return f"SQLite:{self.key}"

    def load(self) -> Optional[Dict[str, Any]]:
        return self.store.load_document(self.key)

    def save(self, data: Dict[str, Any]) -> bool:
        return self.store.save_document(self.key, data)

    def delete(self) -> bool:
        return self.store.delete_document(self.key)


def make_document_store(
    backend: str,
    name: str,
    state_dir: Path,
    catalog: Optional[CatalogStore] = None,
) -> DocumentStore:
    """
    按后端类型创建文档存储

    Args:
        backend: json / sqlite
        name: 文档名（如 starwars-checkpoint）
        state_dir: json 后端的目录
        catalog: sqlite 后端使用的目录存储
    """
    if backend == "sqlite":
        if catalog is None:
            raise ValueError("sqlite state backend requires a CatalogStore")
        return CatalogDocumentStore(catalog, name)
    return JsonDocumentStore(Path(state_dir) / f"{name}.json")
