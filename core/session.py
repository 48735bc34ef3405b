"""
采集会话

CrawlSession 独占一个存活的句柄（无头浏览器或 HTTP 客户端会话），
句柄失效时关闭旧句柄并重新启动；驱动器把句柄显式传给提取器。
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import aiohttp
from fake_useragent import UserAgent
from loguru import logger

from config import Config
from core.errors import LaunchFailed, is_transport_error


class Launcher(ABC):
    """句柄的启动 / 存活检查 / 关闭"""

    name = "launcher"

    @abstractmethod
    async def launch(self) -> Any:
        """启动新句柄，失败抛出异常"""

    @abstractmethod
    def is_alive(self, handle: Any) -> bool:
        """句柄是否仍然可用"""

    @abstractmethod
    async def close(self, handle: Any):
        """释放句柄"""


@dataclass
class BrowserHandle:
    """浏览器句柄（playwright 实例 + 浏览器 + 复用的页面）"""
    playwright: Any
    browser: Any
    page: Any


class PlaywrightLauncher(Launcher):
    """Chromium 无头浏览器"""

    name = "browser"

    def __init__(self, config: Config):
        self.config = config

    async def launch(self) -> BrowserHandle:
        from playwright.async_api import async_playwright

        crawler_config = self.config.crawler
        playwright = await async_playwright().start()
        try:
            browser = await playwright.chromium.launch(headless=crawler_config.headless)
            page = await browser.new_page(
                viewport={"width": crawler_config.viewport_width, "height": crawler_config.viewport_height},
                user_agent=UserAgent().chrome,
            )
            page.set_default_navigation_timeout(crawler_config.request_timeout * 1000)
        except Exception:
            await playwright.stop()
            raise
        return BrowserHandle(playwright=playwright, browser=browser, page=page)

    def is_alive(self, handle: BrowserHandle) -> bool:
        return handle.browser.is_connected() and not handle.page.is_closed()

    async def close(self, handle: BrowserHandle):
        try:
            await handle.browser.close()
        finally:
            await handle.playwright.stop()


class HttpLauncher(Launcher):
    """aiohttp 客户端会话"""

    name = "http"

    def __init__(self, config: Config):
        self.config = config
        self.ua = UserAgent()

    def get_headers(self) -> Dict[str, str]:
        """获取请求头"""
        return {
            "User-Agent": self.ua.random if self.config.crawler.rotate_user_agent else self.ua.chrome,
            "Accept": "text/html,application/json;q=0.9,*/*;q=0.8",
            "Accept-Language": "fr-FR,fr;q=0.9,en;q=0.8",
        }

    async def launch(self) -> aiohttp.ClientSession:
        timeout = aiohttp.ClientTimeout(total=self.config.crawler.request_timeout)
        return aiohttp.ClientSession(timeout=timeout, headers=self.get_headers())

    def is_alive(self, handle: aiohttp.ClientSession) -> bool:
        return not handle.closed

    async def close(self, handle: aiohttp.ClientSession):
        await handle.close()


class CrawlSession:
    """
    采集会话

    Example:
        session = CrawlSession(PlaywrightLauncher(config))
        handle = await session.acquire()
        ...
        session.mark_dead("Target closed")
        handle = await session.acquire()   # 重新启动
        await session.close()
    """

    def __init__(self, launcher: Launcher):
        self.launcher = launcher
        self._handle: Optional[Any] = None
        self._dead_reason: Optional[str] = None
        self.launches = 0

    @property
    def restarts(self) -> int:
        """重启次数（首次启动不计）"""
        return max(0, self.launches - 1)

    @property
    def is_open(self) -> bool:
        return self._handle is not None

    async def acquire(self) -> Any:
        """
        返回存活的句柄，必要时重新启动

        Raises:
            LaunchFailed: 启动失败（致命，不在这里重试）
        """
        if self._handle is not None and self._dead_reason is None and self._alive():
            return self._handle

        if self._handle is not None:
            logger.warning(f"♻️  会话失效，重新启动 ({self._dead_reason or 'not alive'})")
            await self._release()

        try:
            self._handle = await self.launcher.launch()
        except LaunchFailed:
            raise
        except Exception as e:
            raise LaunchFailed(f"Failed to launch {self.launcher.name} session: {e}") from e

        self._dead_reason = None
        self.launches += 1
        logger.info(f"🚀 会话已启动: {self.launcher.name} (第 {self.launches} 次)")
        return self._handle

    def mark_dead(self, reason: str = ""):
        """标记句柄失效，下次 acquire() 时重新启动"""
        self._dead_reason = reason or "marked dead"
        logger.debug(f"Session marked dead: {self._dead_reason}")

    @staticmethod
    def is_transport_error(exc: BaseException) -> bool:
        return is_transport_error(exc)

    def _alive(self) -> bool:
        try:
            return self.launcher.is_alive(self._handle)
        except Exception as e:
            logger.debug(f"Liveness check failed: {e}")
            return False

    async def _release(self):
        """关闭旧句柄（尽力而为，错误只记录）"""
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            await self.launcher.close(handle)
        except Exception as e:
            logger.debug(f"Error while closing stale session: {e}")

    async def close(self):
        """释放句柄"""
        if self._handle is not None:
            await self._release()
            logger.info("🔒 会话已关闭")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
