"""
静态 HTML 提取器（aiohttp + BeautifulSoup）
"""
from typing import List

import aiohttp
from loguru import logger

from config import CollectionTarget, Config, SourceConfig
from core.models import ExtractedCard
from extractors.base import HttpExtractor
from extractors.card_parser import CardPageParser


class HtmlExtractor(HttpExtractor):
    """服务端渲染的列表 / 详情页"""

    name = "html"

    def __init__(self, source: SourceConfig, config: Config):
        super().__init__(source, config)
        self.parser = CardPageParser(self.selectors)

    async def list_page(
        self,
        handle: aiohttp.ClientSession,
        target: CollectionTarget,
        language: str,
        page: int,
    ) -> List[str]:
        url = self.build_list_url(target, language, page)
        html = await self.fetch(handle, url)
        links = self.parser.parse_listing(html, url)
        logger.debug(f"Page {page} of {target.code} ({language}): {len(links)} links")
        return links

    async def extract(
        self,
        handle: aiohttp.ClientSession,
        identifier: str,
        target: CollectionTarget,
        language: str,
    ) -> ExtractedCard:
        html = await self.fetch(handle, identifier)
        return self.parser.parse_card(html, identifier)
