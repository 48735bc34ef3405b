"""
卡牌页面解析器（选择器驱动）

列表页：按 card_link 选择器收集卡牌详情链接（去重、保序）。
详情页：依次尝试 JSON-LD、CSS 选择器、URL 模式，先取到的字段优先。
"""
import json
import re
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from loguru import logger

from core.errors import ParseFailure
from core.models import ExtractedCard


class CardPageParser:
    """
    卡牌页面解析器

    选择器配置（均可省略）：
    - card_link / exclude: 列表页中的详情链接及需要排除的片段
    - name / number / rarity / language / image: 详情页字段选择器
    - attributes: {属性名: 选择器}
    - sku_pattern / url_pattern: 带命名分组的正则（number / language / rarity / name）
    """

    def __init__(self, selectors: Optional[Dict[str, Any]] = None):
        self.selectors = selectors or {}

    # ==================== 列表页 ====================

    def parse_listing(self, html: str, base_url: str) -> List[str]:
        """解析列表页，返回详情页链接"""
        soup = BeautifulSoup(html, "lxml")
        selector = self.selectors.get("card_link", "a[href*='/cards/']")
        exclude = self.selectors.get("exclude", [])

        links = []
        seen = set()
        for a in soup.select(selector):
            href = a.get("href")
            if not href:
                continue
            url = urljoin(base_url, href)
            if any(fragment in url for fragment in exclude):
                continue
            if url not in seen:
                seen.add(url)
                links.append(url)
        return links

    # ==================== 详情页 ====================

    def parse_card(self, html: str, url: str) -> ExtractedCard:
        """
        解析详情页

        Raises:
            ParseFailure: 取不到编号
        """
        soup = BeautifulSoup(html, "lxml")
        data: Dict[str, Any] = {}

        self._merge(data, self._from_json_ld(soup))
        self._merge(data, self._from_selectors(soup, url))
        self._merge(data, self._from_url(url))

        number = (data.get("number") or "").strip()
        if not number:
            raise ParseFailure("No card data extracted", url)

        attributes = {}
        for key, selector in self.selectors.get("attributes", {}).items():
            value = self._text(soup, selector)
            if value:
                attributes[key] = value

        return ExtractedCard(
            number=number,
            name=(data.get("name") or "").strip(),
            language=(data.get("language") or "").lower() or None,
            rarity=(data.get("rarity") or None),
            image_url=data.get("image_url"),
            source_url=url,
            attributes=attributes,
        )

    @staticmethod
    def _merge(data: Dict[str, Any], found: Dict[str, Any]):
        for key, value in found.items():
            if value and not data.get(key):
                data[key] = value

    def _from_json_ld(self, soup: BeautifulSoup) -> Dict[str, Any]:
        """从 JSON-LD 中取 name / sku / image"""
        script = soup.find("script", attrs={"type": "application/ld+json"})
        if not script or not script.string:
            return {}
        try:
            payload = json.loads(script.string)
        except json.JSONDecodeError as e:
            logger.debug(f"Invalid JSON-LD: {e}")
            return {}
        if isinstance(payload, list):
            payload = payload[0] if payload else {}
        if not isinstance(payload, dict):
            return {}

        found: Dict[str, Any] = {"name": payload.get("name")}
        image = payload.get("image")
        if isinstance(image, dict):
            image = image.get("contentUrl") or image.get("url")
        elif isinstance(image, list):
            image = image[0] if image else None
        found["image_url"] = image

        sku_pattern = self.selectors.get("sku_pattern")
        sku = payload.get("sku")
        if sku_pattern and isinstance(sku, str):
            found.update(self._match(sku_pattern, sku))
        return found

    def _from_selectors(self, soup: BeautifulSoup, url: str) -> Dict[str, Any]:
        found = {}
        for field in ("name", "number", "rarity", "language"):
            selector = self.selectors.get(field)
            if selector:
                found[field] = self._text(soup, selector)

        image_selector = self.selectors.get("image")
        if image_selector:
            el = soup.select_one(image_selector)
            if el is not None:
                src = el.get("content") or el.get("data-src") or el.get("src")
                if src and not any(bad in src for bad in ("back", "loader")):
                    found["image_url"] = urljoin(url, src)
        return found

    def _from_url(self, url: str) -> Dict[str, Any]:
        pattern = self.selectors.get("url_pattern")
        if not pattern:
            return {}
        found = self._match(pattern, url)
        if found.get("name"):
            found["name"] = found["name"].replace("-", " ").title()
        return found

    @staticmethod
    def _match(pattern: str, value: str) -> Dict[str, Any]:
        match = re.search(pattern, value, re.IGNORECASE)
        if not match:
            return {}
        return {key: val for key, val in match.groupdict().items() if val}

    @staticmethod
    def _text(soup: BeautifulSoup, selector: str) -> Optional[str]:
        el = soup.select_one(selector)
        if el is None:
            return None
        if el.name == "meta":
            return el.get("content")
        text = el.get_text(strip=True)
        return text or None
