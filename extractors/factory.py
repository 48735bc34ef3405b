"""
提取器工厂模块

根据数据源配置的 extractor 字段创建提取器
"""
from typing import Dict, Optional, Type

from loguru import logger

from config import Config, SourceConfig, config as default_config
from core.errors import SetupError
from extractors.base import Extractor


class ExtractorFactory:
    """
    提取器工厂类

    - html: HtmlExtractor（aiohttp + BeautifulSoup）
    - browser: BrowserExtractor（playwright）
    - json: JsonApiExtractor（分页 JSON 接口）
    """

    # 延迟初始化注册表
    _registry: Optional[Dict[str, Type[Extractor]]] = None

    @classmethod
    def _init_registry(cls):
        """延迟初始化注册表"""
        if cls._registry is None:
            from extractors.browser_extractor import BrowserExtractor
            from extractors.html_extractor import HtmlExtractor
            from extractors.json_api import JsonApiExtractor
            cls._registry = {
                'html': HtmlExtractor,
                'browser': BrowserExtractor,
                'json': JsonApiExtractor,
            }

    @classmethod
    def register(cls, extractor_type: str, extractor_class: Type[Extractor]):
        """
        注册新的提取器类型

        Examples:
            ExtractorFactory.register('graphql', GraphQLExtractor)
        """
        cls._init_registry()
        cls._registry[extractor_type] = extractor_class
        logger.info(f"✅ 注册提取器类型: {extractor_type} -> {extractor_class.__name__}")

    @classmethod
    def available(cls):
        cls._init_registry()
        return sorted(cls._registry)

    @classmethod
    def create(cls, source: SourceConfig, config: Optional[Config] = None) -> Extractor:
        """
        创建提取器实例

        Raises:
            SetupError: 未知的提取器类型
        """
        cls._init_registry()
        extractor_type = source.extractor.lower()
        extractor_class = cls._registry.get(extractor_type)
        if extractor_class is None:
            raise SetupError(
                f"未知的提取器类型: {source.extractor}，可用: {', '.join(cls.available())}"
            )
        logger.info(f"🏭 创建提取器: {extractor_class.__name__} ({source.name})")
        return extractor_class(source, config or default_config)
