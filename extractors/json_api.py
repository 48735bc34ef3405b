"""
JSON API 提取器

分页接口返回记录数组，列表页中已包含完整字段时直接复用（不再请求详情）。
字段映射在数据源配置的 api 段中声明：

    "api": {
        "list_url": "{base_url}/sets/{locator}/cards?lang={language}&page={page}",
        "detail_url": "{base_url}/cards/{id}",
        "items_path": "data",
        "id_field": "id",
        "fields": {"number": "collector_number", "name": "name",
                   "rarity": "rarity", "language": "lang", "image_url": "image_uris.normal"},
        "attributes": {"cost": "cmc", "type": "type_line"}
    }
"""
import json
from typing import Any, Dict, List

import aiohttp
from loguru import logger

from config import CollectionTarget, Config, SourceConfig
from core.errors import ParseFailure
from core.models import ExtractedCard
from extractors.base import HttpExtractor, get_path


class JsonApiExtractor(HttpExtractor):
    """分页 JSON 接口提取器"""

    name = "json"

    def __init__(self, source: SourceConfig, config: Config):
        super().__init__(source, config)
        self.api: Dict[str, Any] = dict(source.api)
        self.fields: Dict[str, str] = self.api.get("fields", {})
        # 列表页已返回的记录（标识 -> 原始数据）
        self._cache: Dict[str, Dict[str, Any]] = {}

    def build_list_url(self, target: CollectionTarget, language: str, page: int) -> str:
        template = self.api.get("list_url", "{base_url}/sets/{locator}/cards?lang={language}&page={page}")
        return template.format(
            base_url=self.source.base_url.rstrip("/"),
            locator=target.locator,
            language=language.lower(),
            page=page,
        )

    def detail_url(self, item_id: str) -> str:
        template = self.api.get("detail_url", "{base_url}/cards/{id}")
        return template.format(base_url=self.source.base_url.rstrip("/"), id=item_id)

    async def _fetch_json(self, handle: aiohttp.ClientSession, url: str) -> Any:
        try:
            return await self.fetch(handle, url, as_json=True)
        except (json.JSONDecodeError, aiohttp.ContentTypeError) as e:
            raise ParseFailure(f"Invalid JSON from {url}: {e}", url) from e

    async def list_page(
        self,
        handle: aiohttp.ClientSession,
        target: CollectionTarget,
        language: str,
        page: int,
    ) -> List[str]:
        url = self.build_list_url(target, language, page)
        payload = await self._fetch_json(handle, url)
        items = get_path(payload, self.api.get("items_path"), default=payload)
        if not isinstance(items, list):
            raise ParseFailure(f"Unexpected listing payload from {url}", url)

        identifiers = []
        id_field = self.api.get("id_field", "id")
        for item in items:
            item_id = get_path(item, id_field)
            if item_id is None:
                logger.debug(f"Item without {id_field} skipped on {url}")
                continue
            identifier = self.detail_url(str(item_id))
            self._cache[identifier] = item
            identifiers.append(identifier)
        return identifiers

    async def extract(
        self,
        handle: aiohttp.ClientSession,
        identifier: str,
        target: CollectionTarget,
        language: str,
    ) -> ExtractedCard:
        item = self._cache.pop(identifier, None)
        if item is None:
            # 重放时没有列表缓存，直接请求详情
            item = await self._fetch_json(handle, identifier)
        return self.to_card(item, identifier)

    def to_card(self, item: Dict[str, Any], identifier: str) -> ExtractedCard:
        """原始记录按字段映射转为 ExtractedCard"""
        if not isinstance(item, dict):
            raise ParseFailure("No card data extracted", identifier)
        number = get_path(item, self.fields.get("number", "number"))
        if number in (None, ""):
            raise ParseFailure("No card data extracted", identifier)

        attributes = {}
        for key, path in self.api.get("attributes", {}).items():
            value = get_path(item, path)
            if value is not None:
                attributes[key] = value

        language = get_path(item, self.fields.get("language", "language"))
        rarity = get_path(item, self.fields.get("rarity", "rarity"))
        return ExtractedCard(
            number=str(number),
            name=str(get_path(item, self.fields.get("name", "name"), default="")),
            language=str(language).lower() if language else None,
            rarity=str(rarity) if rarity is not None else None,
            image_url=get_path(item, self.fields.get("image_url", "image_url")),
            source_url=identifier,
            attributes=attributes,
        )
