"""
提取器模块

包含各种数据源提取器：
- Extractor: 提取器基类
- HtmlExtractor: 静态 HTML 提取器
- BrowserExtractor: 浏览器提取器
- JsonApiExtractor: JSON API 提取器
- ExtractorFactory: 提取器工厂
"""
from extractors.base import Extractor, HttpExtractor
from extractors.card_parser import CardPageParser
from extractors.html_extractor import HtmlExtractor
from extractors.browser_extractor import BrowserExtractor
from extractors.json_api import JsonApiExtractor
from extractors.factory import ExtractorFactory

__all__ = [
    'Extractor',
    'HttpExtractor',
    'CardPageParser',
    'HtmlExtractor',
    'BrowserExtractor',
    'JsonApiExtractor',
    'ExtractorFactory',
]
