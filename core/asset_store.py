"""
图片资源存储

路径确定且按路径覆盖写入；list(prefix) 供对账使用。
"""
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional

from loguru import logger


@dataclass(frozen=True)
class AssetEntry:
    """前缀下的一个资源（name 为相对前缀的文件名）"""
    name: str
    size: int = 0


class AssetStore(ABC):
    """资源存储接口"""

    @abstractmethod
    def put(self, path: str, data: bytes, content_type: str = "image/webp") -> str:
        """写入（覆盖），返回公开引用"""

    @abstractmethod
    def list(self, prefix: str) -> List[AssetEntry]:
        """列出前缀下的资源"""

    @abstractmethod
    def list_prefixes(self, prefix: str) -> List[str]:
        """列出前缀下一级的子前缀（如 "SOR" 下的 "en"、"fr"）"""

    @abstractmethod
    def remove(self, paths: Iterable[str]) -> int:
        """删除资源，返回删除数量"""

    @abstractmethod
    def public_url(self, path: str) -> str:
        """路径对应的公开引用"""


class LocalAssetStore(AssetStore):
    """本地文件系统实现（root 下按路径存放，base_url 拼接公开地址）"""

    def __init__(self, root: Path, base_url: Optional[str] = None):
        self.root = Path(root)
        self.base_url = (base_url or "").rstrip("/")

    def _resolve(self, path: str) -> Path:
        target = (self.root / path.lstrip("/")).resolve()
        root = self.root.resolve()
        if root != target and root not in target.parents:
            raise ValueError(f"Asset path escapes store root: {path}")
        return target

    def public_url(self, path: str) -> str:
        path = path.lstrip("/")
        if self.base_url:
            return f"{self.base_url}/{path}"
        return path

    def put(self, path: str, data: bytes, content_type: str = "image/webp") -> str:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=f".{target.name}.", dir=str(target.parent))
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_path, target)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        logger.debug("Stored asset {} ({} bytes, {})", path, len(data), content_type)
        return self.public_url(path)

    def list(self, prefix: str) -> List[AssetEntry]:
        directory = self._resolve(prefix)
        if not directory.is_dir():
            return []
        return sorted(
            (
                AssetEntry(name=item.name, size=item.stat().st_size)
                for item in directory.iterdir()
                if item.is_file() and not item.name.startswith(".")
            ),
            key=lambda entry: entry.name,
        )

    def list_prefixes(self, prefix: str) -> List[str]:
        directory = self._resolve(prefix)
        if not directory.is_dir():
            return []
        return sorted(
            item.name for item in directory.iterdir()
            if item.is_dir() and not item.name.startswith(".")
        )

    def remove(self, paths: Iterable[str]) -> int:
        removed = 0
        for path in paths:
            target = self._resolve(path)
            if target.exists():
                target.unlink()
                removed += 1
        if removed:
            logger.info("Removed {} assets", removed)
        return removed
