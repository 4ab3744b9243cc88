import asyncio
import time
from typing import Optional

import requests
import structlog
from bs4.dammit import EncodingDetector

from accessibility_api.core.exceptions import (
    NavigationTimeout,
    NetworkUnreachable,
    PageLoadFailed,
    ResponseTooLarge,
)

logger = structlog.get_logger(__name__)

CHUNK_SIZE = 64 * 1024
CONNECT_TIMEOUT_SECONDS = 10


class DocumentFetcher:
    """
    Plain HTTP client for page markup.

    Bodies are streamed and the transfer is aborted as soon as it grows past
    ``max_bytes`` or the overall deadline passes, so a hostile or broken
    server cannot make us buffer without bound.
    """

    def __init__(
        self,
        user_agent: str,
        max_bytes: int,
        timeout_seconds: float,
        session: Optional[requests.Session] = None,
    ):
        self.user_agent = user_agent
        self.max_bytes = max_bytes
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()

    def get(self, url: str) -> str:
        return self._request("GET", url)

    def post(self, url: str, payload: dict, params: Optional[dict] = None) -> str:
        return self._request("POST", url, json=payload, params=params)

    async def get_async(self, url: str) -> str:
        return await asyncio.to_thread(self.get, url)

    async def post_async(self, url: str, payload: dict, params: Optional[dict] = None) -> str:
        return await asyncio.to_thread(self.post, url, payload, params)

    def _request(self, method: str, url: str, **kwargs) -> str:
        headers = {
            "User-Agent": self.user_agent,
            "Accept": "text/html,application/xhtml+xml;q=0.9,*/*;q=0.8",
        }
        deadline = time.monotonic() + self.timeout_seconds
        timeout = (min(CONNECT_TIMEOUT_SECONDS, self.timeout_seconds), self.timeout_seconds)

        try:
            with self.session.request(
                method, url, headers=headers, timeout=timeout, stream=True, **kwargs
            ) as res:
                if res.status_code >= 400:
                    raise PageLoadFailed(detail=f"{method} {url} returned status {res.status_code}")

                declared = res.headers.get("Content-Length", "")
                if declared.isdigit() and int(declared) > self.max_bytes:
                    raise ResponseTooLarge(detail=f"Declared body of {declared} bytes")

                body = bytearray()
                for chunk in res.iter_content(CHUNK_SIZE):
                    body.extend(chunk)
                    if len(body) > self.max_bytes:
                        raise ResponseTooLarge(detail=f"Body exceeded {self.max_bytes} bytes")
                    if time.monotonic() > deadline:
                        raise NavigationTimeout(detail=f"Transfer from {url} exceeded deadline")

                logger.info("Fetched document", url=url, method=method, bytes=len(body))
                charset = res.encoding if "charset" in res.headers.get("Content-Type", "").lower() else None
                return self._decode(bytes(body), charset)

        except requests.Timeout as e:
            raise NavigationTimeout(detail=str(e)) from e
        except requests.ConnectionError as e:
            raise NetworkUnreachable(detail=str(e)) from e
        except requests.RequestException as e:
            raise PageLoadFailed(detail=str(e)) from e

    @staticmethod
    def _decode(body: bytes, charset: Optional[str]) -> str:
        """
        Decode with the header charset when the server sent one.

        Otherwise honour a byte order mark or a ``<meta charset>`` in the
        document and fall back to UTF-8. The ISO-8859-1 that requests assumes
        for ``text/*`` without a charset is never used.
        """
        body, sniffed = EncodingDetector.strip_byte_order_mark(body)
        encoding = charset or sniffed or EncodingDetector.find_declared_encoding(body, is_html=True)
        try:
            return body.decode(encoding or "utf-8", errors="replace")
        except LookupError:
            return body.decode("utf-8", errors="replace")
