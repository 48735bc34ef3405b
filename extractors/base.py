"""
提取器基类模块

包含提取器的抽象基类：
- Extractor: 所有数据源提取器的公共接口
- HttpExtractor: 基于 aiohttp 句柄的提取器公共部分（请求、重试、错误分类）

提取器本身不持有会话句柄，驱动器在每次调用时传入 CrawlSession.acquire() 的结果。
"""
import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

import aiohttp
from loguru import logger
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from config import CollectionTarget, Config, SourceConfig
from core.errors import ExtractionFailure, ExtractionTimeout, NotFound, TransportError
from core.models import ExtractedCard
from core.session import HttpLauncher, Launcher


class TransientHttpError(Exception):
    """可重试的 HTTP 错误（5xx / 429）"""

    def __init__(self, status: int, url: str):
        super().__init__(f"HTTP {status}: {url}")
        self.status = status
        self.url = url


class Extractor(ABC):
    """
    提取器基类

    子类需要实现:
    - list_page(): 返回某一页的记录标识（空列表表示没有更多页）
    - extract(): 提取单条记录，失败抛出 NotFound / ParseFailure
    """

    name = "base"

    def __init__(self, source: SourceConfig, config: Config):
        self.source = source
        self.config = config
        self.selectors: Dict[str, Any] = dict(source.selectors)

    def create_launcher(self) -> Launcher:
        """该提取器需要的会话类型"""
        return HttpLauncher(self.config)

    def build_list_url(self, target: CollectionTarget, language: str, page: int) -> str:
        """
        构造列表页 URL

        默认语言不带语言参数；第 1 页不带页码参数。
        """
        template = self.selectors.get("list_url", "{base_url}/series/{locator}")
        url = template.format(base_url=self.source.base_url.rstrip("/"), locator=target.locator)
        params = {}
        if language.lower() != self.source.default_language.lower():
            params[self.selectors.get("language_param", "lang")] = language.lower()
        if page > 1:
            params[self.selectors.get("page_param", "page")] = str(page)
        return self._with_params(url, params)

    @staticmethod
    def _with_params(url: str, params: Dict[str, str]) -> str:
        if not params:
            return url
        parsed = urlparse(url)
        query = dict(parse_qsl(parsed.query))
        query.update(params)
        return urlunparse(parsed._replace(query=urlencode(query)))

    @abstractmethod
    async def list_page(
        self,
        handle: Any,
        target: CollectionTarget,
        language: str,
        page: int,
    ) -> List[str]:
        """列出某一页的记录标识（页码从 1 开始）"""

    @abstractmethod
    async def extract(
        self,
        handle: Any,
        identifier: str,
        target: CollectionTarget,
        language: str,
    ) -> ExtractedCard:
        """提取单条记录"""


class HttpExtractor(Extractor):
    """基于 aiohttp.ClientSession 句柄的提取器"""

    name = "http"

    async def fetch(self, handle: aiohttp.ClientSession, url: str, as_json: bool = False) -> Any:
        """
        GET 请求（临时错误按 http_retries 重试）

        Raises:
            NotFound: 404 / 410
            ExtractionFailure: 其他非 2xx 或重试耗尽
            ExtractionTimeout: 超时
            TransportError: 连接层错误重试耗尽
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(1, self.config.crawler.http_retries)),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type((TransientHttpError, aiohttp.ClientConnectionError)),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._get(handle, url, as_json)
        except TransientHttpError as e:
            raise ExtractionFailure(str(e), url) from e
        except asyncio.TimeoutError as e:
            raise ExtractionTimeout(f"Timeout: {url}", url) from e
        except aiohttp.ClientConnectionError as e:
            raise TransportError(f"Connection closed: {url} ({e})") from e

    async def _get(self, handle: aiohttp.ClientSession, url: str, as_json: bool) -> Any:
        logger.debug(f"📄 获取页面: {url}")
        async with handle.get(url) as response:
            if response.status in (404, 410):
                raise NotFound(f"HTTP {response.status}: {url}", url)
            if response.status == 429 or response.status >= 500:
                raise TransientHttpError(response.status, url)
            if response.status >= 400:
                raise ExtractionFailure(f"HTTP {response.status}: {url}", url)
            if as_json:
                return await response.json(content_type=None)
            return await response.text()


def get_path(data: Any, path: Optional[str], default: Any = None) -> Any:
    """按点分路径取值，如 get_path(item, "image_uris.normal")"""
    if not path:
        return default
    current = data
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return default
        if current is None:
            return default
    return current
