"""
浏览器提取器（playwright）

用于客户端渲染的站点：页面在无头浏览器中加载完成后取 HTML，
再交给与静态提取器相同的选择器解析器。
"""
from typing import List

from loguru import logger
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from config import CollectionTarget
from core.errors import ExtractionFailure, ExtractionTimeout, NotFound
from core.models import ExtractedCard
from core.session import BrowserHandle, Launcher, PlaywrightLauncher
from extractors.base import Extractor
from extractors.card_parser import CardPageParser


class BrowserExtractor(Extractor):
    """
    浏览器提取器

    额外的选择器配置：
    - wait_for: 列表页等待出现的选择器
    - scroll: 是否滚动到底部触发懒加载
    - settle_ms: 页面加载后的额外等待（毫秒）
    """

    name = "browser"

    def __init__(self, source, config):
        super().__init__(source, config)
        self.parser = CardPageParser(self.selectors)

    def create_launcher(self) -> Launcher:
        return PlaywrightLauncher(self.config)

    async def render(self, handle: BrowserHandle, url: str, wait_for: str = None) -> str:
        """加载页面并返回渲染后的 HTML"""
        page = handle.page
        try:
            response = await page.goto(url, wait_until="networkidle")
            if response is not None and response.status in (404, 410):
                raise NotFound(f"HTTP {response.status}: {url}", url)
            if response is not None and response.status >= 400:
                raise ExtractionFailure(f"HTTP {response.status}: {url}", url)
            if wait_for:
                try:
                    await page.wait_for_selector(wait_for, timeout=self.config.crawler.request_timeout * 1000)
                except PlaywrightTimeoutError:
                    # 空页（超出最后一页）不会出现目标元素
                    logger.debug(f"Selector {wait_for} not found on {url}")
            if self.selectors.get("scroll"):
                await page.evaluate("window.scrollTo(0, document.body.scrollHeight)")
            settle_ms = self.selectors.get("settle_ms", 0)
            if settle_ms:
                await page.wait_for_timeout(settle_ms)
            return await page.content()
        except PlaywrightTimeoutError as e:
            raise ExtractionTimeout(f"Timeout while loading {url}: {e}", url) from e

    async def list_page(
        self,
        handle: BrowserHandle,
        target: CollectionTarget,
        language: str,
        page: int,
    ) -> List[str]:
        url = self.build_list_url(target, language, page)
        logger.debug(f"🌐 加载列表页: {url}")
        html = await self.render(handle, url, wait_for=self.selectors.get("wait_for"))
        return self.parser.parse_listing(html, url)

    async def extract(
        self,
        handle: BrowserHandle,
        identifier: str,
        target: CollectionTarget,
        language: str,
    ) -> ExtractedCard:
        html = await self.render(handle, identifier)
        return self.parser.parse_card(html, identifier)
