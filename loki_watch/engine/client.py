"""HTTP access to the Loki query API."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Protocol

import httpx
import structlog

from ..config import LokiConnection
from .errors import QueryExecutionError

QUERY_PATH = "/loki/api/v1/query"
QUERY_RANGE_PATH = "/loki/api/v1/query_range"


@dataclass(slots=True)
class LokiResponse:
    """Standardised response wrapper."""

    url: str
    status_code: int
    text: str
    headers: Dict[str, str] = field(default_factory=dict)
    raw: httpx.Response | None = field(repr=False, default=None)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class QueryExecutor(Protocol):
    def execute(self, method: str, path: str, params: Mapping[str, str]) -> LokiResponse:
        ...


def ensure_success(response: LokiResponse) -> LokiResponse:
    """Raise QueryExecutionError unless the response carries a 2xx status."""

    if not response.ok:
        raise QueryExecutionError(
            f"Loki API request failed with status {response.status_code}: {response.text}",
            status_code=response.status_code,
            body=response.text,
        )
    return response


class LokiClient:
    """Authenticated Loki client built on a single httpx.Client."""

    def __init__(
        self,
        connection: LokiConnection,
        client: httpx.Client | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.connection = connection
        self.logger = logger or structlog.get_logger("loki_watch.client")
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(
                float(connection.read_timeout), connect=float(connection.connect_timeout)
            ),
        )

    def __enter__(self) -> "LokiClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.connection.auth_token:
            headers["Authorization"] = f"Bearer {self.connection.auth_token}"
        if self.connection.tenant_id:
            headers["X-Scope-OrgID"] = self.connection.tenant_id
        return headers

    def execute(self, method: str, path: str, params: Mapping[str, str]) -> LokiResponse:
        url = self.connection.base_url + path
        self.logger.debug("loki_request", method=method, url=url, params=dict(params))
        try:
            response = self._client.request(
                method=method.upper(),
                url=url,
                params=dict(params),
                headers=self.headers(),
            )
        except httpx.HTTPError as exc:
            self.logger.warning("loki_transport_error", url=url, error=str(exc))
            raise QueryExecutionError(f"Loki request to {url} failed: {exc}") from exc
        return LokiResponse(
            url=str(response.url),
            status_code=response.status_code,
            text=response.text,
            headers=dict(response.headers),
            raw=response,
        )

    def get(self, path: str, params: Mapping[str, str]) -> LokiResponse:
        return ensure_success(self.execute("GET", path, params))

    def post(self, path: str, params: Mapping[str, str]) -> LokiResponse:
        return ensure_success(self.execute("POST", path, params))


__all__ = [
    "QUERY_PATH",
    "QUERY_RANGE_PATH",
    "LokiClient",
    "LokiResponse",
    "QueryExecutor",
    "ensure_success",
]
