"""
MODULE OVERVIEW:
Acquires the anti-forgery token every mutating call must carry.

WHAT IS HAPPENING HERE:
The token is looked up from trusted local sources first: the page's
`<meta name="csrf-token">` and the widget's own data attribute. Only when
both are missing do we ask the server, once, and keep the answer in memory
for the rest of the session. Nothing is ever written to disk.
A failed fetch yields "" instead of an exception: CSRF enforcement is a
server-side setting, so callers just proceed without the header.
"""
import re
import httpx
from json import JSONDecodeError
from loguru import logger

from chatstream.shared.config import settings

_META_PATTERN = re.compile(
    r"""<meta\s+[^>]*name=["']csrf-token["'][^>]*content=["']([^"']*)["']""",
    re.IGNORECASE,
)
_META_PATTERN_REVERSED = re.compile(
    r"""<meta\s+[^>]*content=["']([^"']*)["'][^>]*name=["']csrf-token["']""",
    re.IGNORECASE,
)


def token_from_page(html: str) -> str:
    """Extracts the meta csrf-token from a rendered page, or ""."""
    match = _META_PATTERN.search(html) or _META_PATTERN_REVERSED.search(html)
    return match.group(1) if match else ""


class CsrfTokenProvider:
    def __init__(
        self,
        http: httpx.AsyncClient,
        token_url: str,
        meta_token: str = "",
        data_token: str = "",
        header_name: str = settings.CSRF_HEADER_NAME,
    ):
        self.http = http
        self.token_url = token_url
        self.meta_token = meta_token
        self.data_token = data_token
        self.header_name = header_name
        self._cached_token = ""
        self.fetch_count = 0

    @classmethod
    def from_page(cls, http: httpx.AsyncClient, token_url: str, html: str, **kwargs) -> "CsrfTokenProvider":
        return cls(http, token_url, meta_token=token_from_page(html), **kwargs)

    def get_token(self) -> str:
        return self.meta_token or self.data_token or self._cached_token

    async def ensure_token(self) -> str:
        token = self.get_token()
        if token:
            return token

        self.fetch_count += 1
        try:
            response = await self.http.get(self.token_url)
            if not response.is_success:
                logger.warning(f"event=csrf_fetch_failed status={response.status_code}")
                return ""
            data = response.json()
        except (httpx.HTTPError, JSONDecodeError) as e:
            logger.warning(f"event=csrf_fetch_failed error={e!r}")
            return ""

        token = data.get("token", "") if isinstance(data, dict) else ""
        if token:
            self._cached_token = token
            logger.debug("event=csrf_token_cached")
        return token

    def invalidate(self) -> None:
        if self._cached_token:
            logger.info("event=csrf_token_invalidated")
        self._cached_token = ""

    async def headers(self) -> dict[str, str]:
        token = await self.ensure_token()
        return {self.header_name: token} if token else {}
