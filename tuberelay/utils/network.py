"""
网络请求模块 - 上游字节流 (curl_cffi, 浏览器指纹模拟)
"""
from __future__ import annotations

from pathlib import Path
from typing import AsyncIterator, Dict, Optional

from curl_cffi.requests import AsyncSession

from tuberelay.errors import UpstreamUnavailable
from tuberelay.utils.logger import logger

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)


def build_proxies(proxy_url: str | None) -> Optional[Dict[str, str]]:
    """Map a single proxy URL onto the http/https proxies dict."""
    url = str(proxy_url or "").strip()
    if not url:
        return None
    if "://" not in url:
        url = f"http://{url}"
    return {"http": url, "https": url}


class UpstreamStream:
    """An open upstream response whose body has not been consumed yet."""

    def __init__(self, session: AsyncSession, response, url: str):
        self._session = session
        self._response = response
        self.url = url
        self.closed = False

    @property
    def status_code(self) -> int:
        return int(self._response.status_code)

    @property
    def content_length(self) -> int | None:
        value = self._response.headers.get("content-length")
        try:
            return int(value) if value is not None else None
        except ValueError:
            return None

    async def iter_chunks(self) -> AsyncIterator[bytes]:
        async for chunk in self._response.aiter_content():
            if chunk:
                yield chunk

    async def aclose(self) -> None:
        """Abort the transfer; safe to call more than once."""
        if self.closed:
            return
        self.closed = True
        try:
            await self._response.aclose()
        finally:
            await self._session.close()


class NetworkHandler:
    """网络请求处理器"""

    def __init__(
        self,
        timeout: float = 15,
        proxies: Optional[Dict[str, str]] = None,
        user_agent: str = DEFAULT_USER_AGENT,
        chunk_size: int = 64 * 1024,
    ):
        # With stream=True curl_cffi applies this to connect + stall detection only.
        self.timeout = timeout
        self.proxies = proxies
        self.chunk_size = chunk_size
        self.headers = {"User-Agent": user_agent}

    async def open(self, url: str, headers: Optional[Dict[str, str]] = None) -> UpstreamStream:
        """Open a streaming GET against a fetch locator.

        Raises:
            UpstreamUnavailable: transport error or non-2xx status.
        """
        merged_headers = dict(self.headers)
        if headers:
            merged_headers.update(headers)

        session = AsyncSession(proxies=self.proxies, impersonate="chrome", verify=False)
        try:
            response = await session.request(
                "GET",
                url,
                headers=merged_headers,
                timeout=self.timeout,
                stream=True,
            )
        except Exception as e:
            await session.close()
            logger.error(f"Request failed: {e}")
            raise UpstreamUnavailable(f"Failed to open media stream: {e}") from e

        stream = UpstreamStream(session, response, url)
        if not 200 <= stream.status_code < 300:
            await stream.aclose()
            logger.warning(f"HTTP {stream.status_code} while opening media stream")
            raise UpstreamUnavailable(f"Media stream returned HTTP {stream.status_code}")
        return stream

    async def download_to(self, url: str, path: str | Path, headers: Optional[Dict[str, str]] = None) -> int:
        """Materialize a locator into a local file; returns the byte count."""
        stream = await self.open(url, headers=headers)
        written = 0
        try:
            with open(path, "wb") as f:
                async for chunk in stream.iter_chunks():
                    f.write(chunk)
                    written += len(chunk)
        except (UpstreamUnavailable, OSError):
            raise
        except Exception as e:
            raise UpstreamUnavailable(f"Media download interrupted: {e}") from e
        finally:
            await stream.aclose()

        expected = stream.content_length
        if expected and written < expected:
            raise UpstreamUnavailable(f"Download incomplete: expected {expected}, got {written}")
        return written
