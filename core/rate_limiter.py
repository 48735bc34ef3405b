"""
请求速率限制器

按逻辑主机记录上一次请求时间，保证同一主机两次请求之间至少间隔 min_interval 秒。
"""
import asyncio
import time
from typing import Dict, Optional
from urllib.parse import urlparse


class RateLimiter:
    """
    最小间隔限速器

    Example:
        limiter = RateLimiter(min_interval=0.5)
        await limiter.wait("https://www.swucards.fr/cards/sor-001")
    """

    def __init__(self, min_interval: float = 0.5, clock=time.monotonic, sleep=asyncio.sleep):
        self.min_interval = max(0.0, min_interval)
        self._clock = clock
        self._sleep = sleep
        self._last_request: Dict[str, float] = {}
        self.total_wait = 0.0

    @staticmethod
    def host_key(target: Optional[str]) -> str:
        """URL 取主机名作为限速键；非 URL 原样使用"""
        if not target:
            return "default"
        if "://" in target:
            return urlparse(target).netloc or target
        return target

    async def wait(self, target: Optional[str] = None) -> float:
        """
        等待直到允许下一次请求

        Returns:
            实际等待的秒数
        """
        key = self.host_key(target)
        last = self._last_request.get(key)
        waited = 0.0
        if last is not None:
            remaining = self.min_interval - (self._clock() - last)
            if remaining > 0:
                await self._sleep(remaining)
                waited = remaining
                self.total_wait += remaining
        self._last_request[key] = self._clock()
        return waited
