"""
HTTP backend for a remote memory service.

Speaks a small JSON protocol:

    POST {base}/records          {"record": {...}}              -> {"id": "..."}
    POST {base}/search           {"query", "limit", "options"}  -> {"hits": [{"record_id", "score"}]}
    GET  {base}/records?since=ts                                -> {"records": [{...}]}
    POST {base}/records/bulk     {"records": [...]}             -> {"applied": n}

Transport errors and 5xx/429 responses map to BackendUnavailable; other
4xx responses map to BackendRejected.
"""

from __future__ import annotations

import math
from typing import Any, Dict, List, Optional, Sequence

import httpx

from ..core.schemas import Record, SearchHit, SearchOptions
from ..errors import BackendRejected, BackendUnavailable
from .base import BackendAdapter, Query, WriteAck


class RemoteBackend(BackendAdapter):
    """Adapter for a hosted memory/vector service reachable over HTTP."""

    kind = "remote"

    def __init__(
        self,
        name: str,
        base_url: str,
        api_key: Optional[str] = None,
        timeout_s: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(name)
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout_s,
            transport=transport,
        )

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        if self._client.is_closed:
            raise BackendUnavailable(self.name, "client closed")
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise BackendUnavailable(self.name, f"{type(e).__name__}: {e}") from e

        if response.status_code >= 500 or response.status_code == 429:
            raise BackendUnavailable(self.name, f"HTTP {response.status_code}")
        if response.status_code >= 400:
            raise BackendRejected(self.name, f"HTTP {response.status_code}: {response.text[:200]}")

        try:
            return response.json() if response.content else {}
        except ValueError as e:
            raise BackendUnavailable(self.name, f"invalid JSON body: {e}") from e

    async def write(self, record: Record) -> WriteAck:
        data = await self._request("POST", "/records", json={"record": record.to_storage_dict()})
        return WriteAck(backend_record_id=data.get("id"))

    async def search(self, query: Query, options: SearchOptions, limit: int) -> List[SearchHit]:
        payload = {
            "query": query if isinstance(query, str) else [float(x) for x in query],
            "limit": limit,
            "options": options.model_dump(),
        }
        data = await self._request("POST", "/search", json=payload)
        try:
            hits = [
                SearchHit(record_id=h["record_id"], score=float(h["score"]), source_backend=self.name)
                for h in data.get("hits", [])
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise BackendUnavailable(self.name, f"malformed search response: {e}") from e
        if not all(math.isfinite(h.score) for h in hits):
            raise BackendUnavailable(self.name, "malformed search response: non-finite score")
        hits.sort(key=lambda h: (-h.score, h.record_id))
        return hits[:limit]

    async def pull_delta(self, since: float) -> List[Record]:
        data = await self._request("GET", "/records", params={"since": since})
        try:
            return [Record.from_storage_dict(r) for r in data.get("records", [])]
        except (TypeError, ValueError) as e:
            raise BackendUnavailable(self.name, f"malformed delta: {e}") from e

    async def bulk_apply(self, records: Sequence[Record]) -> int:
        if not records:
            return 0
        data = await self._request(
            "POST", "/records/bulk", json={"records": [r.to_storage_dict() for r in records]}
        )
        return int(data.get("applied", len(records)))

    async def disconnect(self) -> None:
        if not self._client.is_closed:
            await self._client.aclose()
