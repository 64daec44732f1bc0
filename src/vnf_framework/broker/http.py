"""HTTP(S) transport built on httpx."""
import logging
import time
from typing import Optional

import httpx

from ..errors import CommError
from ..models import Credentials
from .base import Transport, TransportResult

logger = logging.getLogger(__name__)


class HttpTransport(Transport):
    """Sends requests to appliance REST APIs.

    One ``httpx.AsyncClient`` is shared across requests; timeouts are set
    per request.
    """

    protocols = ("http", "https")

    def __init__(self, verify_ssl: bool = True, client: Optional[httpx.AsyncClient] = None):
        self.verify_ssl = verify_ssl
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                verify=self.verify_ssl,
                follow_redirects=True,
            )
        return self._client

    async def send(
        self,
        address: str,
        protocol: str,
        method: str,
        path: str,
        headers: dict[str, str],
        body: str,
        timeout: float,
        port: int,
        credentials: Optional[Credentials] = None,
    ) -> TransportResult:
        url = f"{protocol}://{address}:{port}{path}"
        auth = None
        if credentials and credentials.username and "Authorization" not in headers:
            auth = httpx.BasicAuth(credentials.username, credentials.password or "")

        start = time.perf_counter()
        try:
            resp = await self._get_client().request(
                method,
                url,
                headers=headers,
                content=body.encode("utf-8") if body else None,
                timeout=httpx.Timeout(timeout),
                auth=auth,
            )
        except httpx.TimeoutException as e:
            raise CommError(f"Timeout after {timeout}s: {method} {url}", retriable=True) from e
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as e:
            # UnsupportedProtocol subclasses TransportError
            raise CommError(f"Malformed request {method} {url}: {e}", retriable=False) from e
        except httpx.TransportError as e:
            raise CommError(f"Connection failed: {method} {url}: {e}", retriable=True) from e
        except httpx.HTTPError as e:
            # TooManyRedirects, DecodingError
            raise CommError(f"Request failed: {method} {url}: {e}", retriable=False) from e

        duration = (time.perf_counter() - start) * 1000
        return TransportResult(
            status=resp.status_code,
            body=resp.text,
            headers=dict(resp.headers),
            duration_ms=duration,
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
