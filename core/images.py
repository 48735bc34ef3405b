"""
图片处理管道

下载 → 等比缩放（不放大）→ WebP 编码 → 按确定路径写入资源存储。
各阶段失败统一抛出 ImageFailure(stage=download|transform|store)，管道内部不重试，
回退策略由驱动器决定。
"""
import asyncio
import io
import re
from typing import Dict, Optional

import aiohttp
from fake_useragent import UserAgent
from loguru import logger
from PIL import Image, UnidentifiedImageError

from config import Config, config as default_config
from core.asset_store import AssetStore
from core.errors import DownloadFailed, ImageFailure
from core.models import AssetRef

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")
_LEADING_DIGITS = re.compile(r"^(\d+)(.*)$", re.DOTALL)


def sanitize_item_number(number: str) -> str:
    """
    编号转为安全的文件名：[A-Za-z0-9._-] 以外的字符一律替换为 '-'

    有损且稳定："1/2" 与 "1-2" 得到同一路径，对账时作为冲突报告。
    """
    return _UNSAFE_CHARS.sub("-", number.strip())


def normalize_number(number: str) -> str:
    """去掉开头数字段的前导零，用于补零容忍比较（"007" ≡ "7"，"007-PR" ≡ "7-PR"）"""
    match = _LEADING_DIGITS.match(number.strip())
    if not match:
        return number.strip()
    digits, rest = match.groups()
    return f"{int(digits)}{rest}"


def asset_path(collection_code: str, language: str, item_number: str, ext: str = "webp") -> str:
    """卡图路径：{collection}/{language}/{sanitized number}.webp"""
    return f"{collection_code}/{language.lower()}/{sanitize_item_number(item_number)}.{ext}"


def collection_asset_path(collection_code: str, ext: str = "webp") -> str:
    """系列图路径：series/{collection}.webp"""
    return f"series/{collection_code}.{ext}"


class ImagePipeline:
    """
    图片处理管道

    Example:
        async with ImagePipeline(LocalAssetStore(root)) as pipeline:
            ref = await pipeline.process(url, "SOR", "fr", "007")
            print(ref.public_url)
    """

    def __init__(self, asset_store: AssetStore, config: Optional[Config] = None):
        self.config = config or default_config
        self.image_config = self.config.image
        self.asset_store = asset_store
        self.ua = UserAgent()
        self.session: Optional[aiohttp.ClientSession] = None
        self.stats = {
            "total": 0,
            "success": 0,
            "failed": 0,
        }

    async def __aenter__(self):
        """异步上下文管理器入口"""
        await self.init_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """异步上下文管理器出口"""
        await self.close()

    async def init_session(self):
        """初始化HTTP会话"""
        if self.session is not None and not self.session.closed:
            return
        timeout = aiohttp.ClientTimeout(total=self.config.crawler.request_timeout)
        self.session = aiohttp.ClientSession(timeout=timeout)
        logger.debug("Image pipeline session initialized")

    async def close(self):
        """关闭会话"""
        if self.session:
            await self.session.close()
            self.session = None
            logger.info(f"Image stats: {self.stats}")

    def get_headers(self) -> Dict[str, str]:
        """获取请求头"""
        return {
            "User-Agent": self.ua.random if self.config.crawler.rotate_user_agent else self.ua.chrome,
            "Accept": "image/webp,image/apng,image/*,*/*;q=0.8",
        }

    async def process(
        self,
        source_url: str,
        collection_code: str,
        language: str,
        item_number: str,
    ) -> AssetRef:
        """
        处理一张卡图

        Args:
            source_url: 源图片地址
            collection_code: 系列代码
            language: 语言
            item_number: 卡牌编号（原始值，路径中会做安全化处理）

        Returns:
            AssetRef（路径 + 公开引用）

        Raises:
            ImageFailure: 任一阶段失败
        """
        self.stats["total"] += 1
        try:
            data = await self.download(source_url)
            encoded = self.transform(
                data,
                max_width=self.image_config.card_max_width,
                max_height=self.image_config.card_max_height,
                quality=self.image_config.card_quality,
            )
            path = asset_path(collection_code, language, item_number, self.image_config.output_format)
            ref = self.store(path, encoded)
        except ImageFailure as e:
            if e.source_url is None:
                e.source_url = source_url
            self.stats["failed"] += 1
            raise

        self.stats["success"] += 1
        logger.debug(f"Image stored: {ref.path}")
        return ref

    async def process_collection_image(self, source_url: str, collection_code: str) -> AssetRef:
        """处理系列图（宽度上限 800，质量 90）"""
        data = await self.download(source_url)
        encoded = self.transform(
            data,
            max_width=self.image_config.auxiliary_max_width,
            max_height=None,
            quality=self.image_config.auxiliary_quality,
        )
        return self.store(collection_asset_path(collection_code, self.image_config.output_format), encoded)

    async def download(self, url: str) -> bytes:
        """下载原图（非 2xx 或网络错误抛出 DownloadFailed）"""
        await self.init_session()
        try:
            async with self.session.get(url, headers=self.get_headers()) as response:
                if response.status < 200 or response.status >= 300:
                    raise DownloadFailed(f"HTTP {response.status}", url)
                data = await response.read()
        except DownloadFailed:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise DownloadFailed(str(e) or e.__class__.__name__, url) from e

        if not data:
            raise DownloadFailed("Empty response body", url)
        if len(data) > self.image_config.max_size:
            raise DownloadFailed(f"Image too large ({len(data)} bytes)", url)
        return data

    def transform(
        self,
        data: bytes,
        max_width: int,
        max_height: Optional[int],
        quality: int,
    ) -> bytes:
        """等比缩放到边界内（不放大）并编码为 WebP"""
        try:
            img = Image.open(io.BytesIO(data))
            img.load()
            if img.mode not in ("RGB", "RGBA"):
                img = img.convert("RGBA" if "A" in img.getbands() or img.mode == "P" else "RGB")

            if max_height is None:
                # 只限制宽度，高度按比例
                max_height = img.height
            img.thumbnail((max_width, max_height), Image.Resampling.LANCZOS)

            output = io.BytesIO()
            img.save(output, format="WEBP", quality=quality)
            return output.getvalue()
        except (UnidentifiedImageError, OSError, ValueError) as e:
            raise ImageFailure("transform", str(e)) from e

    def store(self, path: str, data: bytes) -> AssetRef:
        """写入资源存储（覆盖）"""
        try:
            public_url = self.asset_store.put(path, data, content_type=f"image/{self.image_config.output_format}")
        except (OSError, ValueError) as e:
            raise ImageFailure("store", str(e)) from e
        return AssetRef(path=path, public_url=public_url)
