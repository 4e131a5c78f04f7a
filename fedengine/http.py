# fedengine/http.py
"""
Outbound HTTP for the federation engine.

Every network call (WebFinger, actor fetches, key fetches, delivery) goes
through a FederationClient so that timeouts and the User-Agent are applied
uniformly and tests can substitute a fake transport.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from .config import FederationConfig
from .errors import FetchError

logger = logging.getLogger(__name__)

ACTIVITY_JSON = "application/activity+json"
ACTIVITY_ACCEPT = (
    'application/activity+json, '
    'application/ld+json; profile="https://www.w3.org/ns/activitystreams"'
)
JRD_ACCEPT = "application/jrd+json, application/json"


@dataclass
class HttpResponse:
    """A completed HTTP exchange, successful or not."""
    status: int
    body: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.body.decode("utf-8"))


class FederationClient:
    """
    HTTP client for talking to remote nodes.

    Args:
        config: Node configuration (timeout, user agent)
    """

    def __init__(self, config: FederationConfig):
        self.timeout = config.http_timeout
        self.user_agent = config.user_agent

    def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        body: Optional[bytes] = None,
    ) -> HttpResponse:
        """
        Perform a request.

        Non-2xx responses are returned, not raised.

        Raises:
            FetchError: The request could not be completed
        """
        all_headers = {"User-Agent": self.user_agent}
        all_headers.update(headers or {})
        req = Request(url, data=body, headers=all_headers, method=method)

        try:
            with urlopen(req, timeout=self.timeout) as response:
                return HttpResponse(
                    status=response.status,
                    body=response.read(),
                    headers=dict(response.headers.items()),
                )
        except HTTPError as e:
            return HttpResponse(
                status=e.code,
                body=e.read() or b"",
                headers=dict(e.headers.items()) if e.headers else {},
            )
        except (URLError, OSError, ValueError) as e:
            raise FetchError(f"{method} {url} failed: {e}") from e

    def get_json(self, url: str, accept: str = ACTIVITY_ACCEPT) -> Optional[Dict[str, Any]]:
        """
        GET a JSON document.

        Returns None on non-2xx status, network failure, or a body that is
        not a JSON object.
        """
        try:
            response = self.request("GET", url, headers={"Accept": accept})
        except FetchError as e:
            logger.warning(str(e))
            return None

        if not response.ok:
            logger.warning(f"GET {url} returned {response.status}")
            return None

        try:
            data = response.json()
        except (ValueError, UnicodeDecodeError):
            logger.warning(f"GET {url} returned invalid JSON")
            return None

        if not isinstance(data, dict):
            return None
        return data
