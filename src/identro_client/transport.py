"""
HTTP transport for the Identro collector.

The batcher only depends on the ``Transport`` protocol; ``HttpTransport`` is the
httpx-backed implementation used by the client facade.
"""

from __future__ import annotations

from typing import Optional, Protocol, Sequence, runtime_checkable

import httpx
from loguru import logger
from pydantic import ValidationError

from . import __version__
from .errors import PermanentTransportError, map_http_error
from .models import AgentEvent, BatchResult, EventBatch, ScoreResponse

USER_AGENT = f"identro-client/{__version__}"


@runtime_checkable
class Transport(Protocol):
    """Network egress for the delivery pipeline."""

    async def send(self, events: Sequence[AgentEvent], batch_id: str) -> BatchResult:
        """Deliver one batch. Raises TransientTransportError / PermanentTransportError."""
        ...

    async def get_score(self, agent_id: str) -> ScoreResponse: ...

    async def aclose(self) -> None: ...


class HttpTransport:
    """Posts batches to ``{endpoint}/v1/events`` and reads ``/v1/score/{agent_id}``.

    Example:
        transport = HttpTransport("https://api.identro.com", api_key="...")
        result = await transport.send(events, batch_id)
        await transport.aclose()
    """

    def __init__(
        self,
        endpoint: str,
        api_key: str,
        *,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._endpoint = endpoint.rstrip("/")
        self._headers = {
            "Content-Type": "application/json",
            "X-Identro-Key": api_key,
            "User-Agent": USER_AGENT,
        }
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def endpoint(self) -> str:
        return self._endpoint

    async def send(self, events: Sequence[AgentEvent], batch_id: str) -> BatchResult:
        body = EventBatch(events=list(events), batch_id=batch_id).to_wire()
        payload = await self._request("POST", "/v1/events", json=body)
        try:
            return BatchResult.model_validate(payload)
        except ValidationError as e:
            raise PermanentTransportError(f"malformed batch response: {e}") from e

    async def get_score(self, agent_id: str) -> ScoreResponse:
        payload = await self._request("GET", f"/v1/score/{agent_id}")
        try:
            return ScoreResponse.model_validate(payload)
        except ValidationError as e:
            raise PermanentTransportError(f"malformed score response: {e}") from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs):
        url = f"{self._endpoint}{path}"
        try:
            resp = await self._client.request(method, url, headers=self._headers, **kwargs)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            err = map_http_error(e)
            logger.debug(f"{method} {url} failed: {type(err).__name__}: {err}")
            raise err from e
        try:
            return resp.json()
        except ValueError as e:
            raise PermanentTransportError(f"response from {url} is not JSON") from e
