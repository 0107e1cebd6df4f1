"""HTTP access to the analysis service (streaming and blocking endpoints)."""

from __future__ import annotations

import json
from typing import Any, AsyncIterator, Optional

import aiohttp

from capture_pipeline.config import AnalysisSettings
from capture_pipeline.core.logging_utils import LoggerLike, ensure_structured_logger
from capture_pipeline.errors import PayloadTooLargeError, TransportError

from .events import SSEFrameParser, StreamEvent

PAYLOAD_TOO_LARGE_MARKER = "PAYLOAD_TOO_LARGE"


def _headers(auth_token: str, *, streaming: bool) -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        "Accept": "text/event-stream" if streaming else "application/json",
        "Authorization": f"Bearer {auth_token}",
    }


class AnalysisTransport:
    """Owns the aiohttp session used for analysis requests.

    A session passed in by the caller is borrowed and left open on close.
    """

    def __init__(
        self,
        settings: AnalysisSettings,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        logger: LoggerLike = None,
    ) -> None:
        self._settings = settings
        self._session = session
        self._owns_session = session is None
        self._logger = ensure_structured_logger(logger, fallback_name="AnalysisTransport")

    async def __aenter__(self) -> "AnalysisTransport":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def stream_events(self, body: dict[str, Any], auth_token: str) -> AsyncIterator[StreamEvent]:
        """Yield events from the streaming endpoint in arrival order.

        ``sock_read`` bounds the silence between chunks; the caller bounds
        the total duration.
        """
        timeout = aiohttp.ClientTimeout(
            total=None,
            connect=self._settings.connect_timeout_s,
            sock_read=self._settings.stream_idle_timeout_s,
        )
        url = self._settings.stream_url
        self._logger.debug("Opening event stream %s", url)
        async with self._get_session().post(
            url,
            json=body,
            headers=_headers(auth_token, streaming=True),
            timeout=timeout,
        ) as response:
            if response.status >= 400:
                raise TransportError(f"Stream request failed: {response.status}", status=response.status)

            parser = SSEFrameParser()
            async for chunk in response.content.iter_any():
                for event in parser.feed(chunk):
                    yield event
            for event in parser.close():
                yield event
            if parser.skipped:
                self._logger.debug("Skipped %d malformed event line(s)", parser.skipped)

    async def fetch_result(self, body: dict[str, Any], auth_token: str) -> Any:
        """Single blocking request; returns the decoded JSON body."""
        timeout = aiohttp.ClientTimeout(
            total=self._settings.fallback_timeout_s,
            connect=self._settings.connect_timeout_s,
        )
        url = self._settings.fallback_url
        self._logger.debug("Requesting %s", url)
        async with self._get_session().post(
            url,
            json=body,
            headers=_headers(auth_token, streaming=False),
            timeout=timeout,
        ) as response:
            text = await response.text(errors="replace")
            if response.status == 413 or PAYLOAD_TOO_LARGE_MARKER in text:
                raise PayloadTooLargeError()
            if not 200 <= response.status < 300:
                raise TransportError(f"Analysis failed: {response.status}", status=response.status)
            try:
                return json.loads(text)
            except ValueError:
                self._logger.warning("Fallback response was not JSON (%d bytes)", len(text))
                return None


__all__ = ["AnalysisTransport", "PAYLOAD_TOO_LARGE_MARKER"]
