import json
import re
import httpx
from loguru import logger

from chatstream.client.csrf import CsrfTokenProvider
from chatstream.shared.config import settings
from chatstream.shared.errors import AuthenticationRequired, TransportFailure

NETWORK_HINT = "Connection interrupted (network or proxy). Check the server and try again."
_NETWORK_SIGNATURES = re.compile(r"network|fetch|HTTP2|protocol|connect", re.IGNORECASE)


def describe_http_failure(status_code: int, body: str) -> str:
    """
    Builds the user-facing message for a non-2xx response.
    Only a short prefix of the body is ever used, so a large HTML error page
    never ends up in the transcript.
    """
    if status_code in (401, 403):
        return "Session expired or access denied. Reload and try again."
    if status_code == 405:
        return "Bad request (method not allowed). Reload and try again."

    message = f"Server error ({status_code}). Please try again."
    stripped = body.strip()
    if len(stripped) < 2000 and stripped.startswith("{"):
        try:
            parsed = json.loads(stripped)
        except ValueError:
            parsed = None
        if isinstance(parsed, dict):
            detail = parsed.get("error") or parsed.get("message") or parsed.get("detail")
            if detail:
                return f"{message} {detail}"
    if "Exception" in stripped and len(stripped) < 500:
        return f"{message} {stripped[:200]}"
    return message


def describe_transport_error(error: BaseException) -> str:
    """Gives network failures an actionable hint; anything else stays generic."""
    if isinstance(error, TransportFailure):
        return error.message
    text = str(error) or error.__class__.__name__
    if isinstance(error, httpx.TransportError) or _NETWORK_SIGNATURES.search(text):
        return NETWORK_HINT
    return f"{text} (chat client)"


class BaseApiClient:
    """
    Owns the HTTP client and the CSRF provider shared by every API consumer.
    """

    def __init__(self, server_base_url: str = settings.BASE_URL, http: httpx.AsyncClient | None = None,
                 csrf: CsrfTokenProvider | None = None):
        self.server_base_url = server_base_url.rstrip('/')
        self.http = http or httpx.AsyncClient(timeout=httpx.Timeout(settings.STREAM_TIMEOUT_S + 5.0))
        self.csrf = csrf or CsrfTokenProvider(self.http, self.api_url("/csrf-token"))

    def api_url(self, path: str) -> str:
        return f"{self.server_base_url}{settings.API_PREFIX}{path}"

    async def aclose(self) -> None:
        await self.http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def mutating_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        headers.update(await self.csrf.headers())
        return headers

    def raise_for_failure(self, status_code: int, body: str) -> None:
        message = describe_http_failure(status_code, body)
        logger.warning(f"event=http_failure status={status_code} message={message!r}")
        if status_code in (401, 403):
            self.csrf.invalidate()
            raise AuthenticationRequired(message, status_code)
        raise TransportFailure(message, status_code)

    async def request_json(self, method: str, path: str, *, mutating: bool = False, **kwargs):
        headers = kwargs.pop("headers", {})
        if mutating:
            headers = {**await self.mutating_headers(), **headers}
        response = await self.http.request(method, self.api_url(path), headers=headers, **kwargs)
        if not response.is_success:
            self.raise_for_failure(response.status_code, response.text)
        return response.json()
