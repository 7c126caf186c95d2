"""robots.txt policy, cached per origin."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol
from urllib.parse import urlparse
from urllib.robotparser import RobotFileParser

from prospector.errors import TransientFetchError
from prospector.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)


class TextSource(Protocol):
    async def get_text(self, url: str) -> tuple[int, str]: ...


class RobotsPolicy:
    """Answers whether a URL may be fetched by our user agent.

    Semantics follow urllib.robotparser: 401/403 disallow the whole origin,
    any other error status allows it. An unreachable robots.txt allows it.
    """

    def __init__(self, source: TextSource, user_agent: str = "*", enabled: bool = True) -> None:
        self._source = source
        self._user_agent = user_agent
        self._enabled = enabled
        self._parsers: dict[str, RobotFileParser] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def allowed(self, url: str) -> bool:
        if not self._enabled:
            return True
        parsed = urlparse(url)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            return False
        origin = f"{parsed.scheme}://{parsed.netloc}"
        parser = await self._parser_for(origin)
        return parser.can_fetch(self._user_agent, url)

    async def _parser_for(self, origin: str) -> RobotFileParser:
        cached = self._parsers.get(origin)
        if cached is not None:
            return cached
        lock = self._locks.setdefault(origin, asyncio.Lock())
        async with lock:
            cached = self._parsers.get(origin)
            if cached is not None:
                return cached
            parser = RobotFileParser(f"{origin}/robots.txt")
            try:
                status, body = await self._source.get_text(f"{origin}/robots.txt")
            except TransientFetchError as exc:
                emit_structured_error(
                    logger,
                    code=ErrorCode.PAGE_FETCH_FAILED,
                    message=str(exc),
                    suppressed=True,
                    details={"url": f"{origin}/robots.txt"},
                )
                status, body = 404, ""
            if status in (401, 403):
                parser.disallow_all = True
            elif status >= 400:
                parser.allow_all = True
            else:
                parser.parse(body.splitlines())
            self._parsers[origin] = parser
            return parser
