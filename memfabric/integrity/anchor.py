"""
Integrity anchor.

compute_hash is a pure function of content + namespace + domain tag.
anchor() publishes a digest to an external ledger on a best-effort basis:
failures are recorded (anchored=False) and queued for a later
collaborator-triggered retry, never raised to the store path.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Tuple

import httpx

from ..errors import AnchorFailure
from ..persist.hashing import DEFAULT_DOMAIN_TAG, compute_integrity_hash
from ..telemetry import get_logger

logger = get_logger(__name__)


@dataclass
class AnchorReceipt:
    """Outcome of one anchoring attempt."""

    digest: str
    anchored: bool
    reference: Optional[str] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def record_id(self) -> Optional[str]:
        return self.metadata.get("record_id")


class LedgerClient(ABC):
    """External tamper-evident ledger."""

    @abstractmethod
    async def publish(self, digest: str, metadata: Dict[str, Any]) -> str:
        """Publish a digest and return the external reference. Raises AnchorFailure."""

    async def close(self) -> None:
        pass


class HttpLedgerClient(LedgerClient):
    """
    Ledger reachable over HTTP.

        POST {base}/anchors {"digest": "...", "metadata": {...}} -> {"reference": "..."}
    """

    def __init__(self, base_url: str, timeout_s: float = 2.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._client = httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout_s, transport=transport)

    async def publish(self, digest: str, metadata: Dict[str, Any]) -> str:
        try:
            response = await self._client.post("/anchors", json={"digest": digest, "metadata": metadata})
            response.raise_for_status()
            reference = response.json().get("reference")
        except (httpx.HTTPError, ValueError) as e:
            raise AnchorFailure(f"ledger publish failed: {e}") from e
        if not reference:
            raise AnchorFailure("ledger returned no reference")
        return str(reference)

    async def close(self) -> None:
        if not self._client.is_closed:
            await self._client.aclose()


class IntegrityAnchor:
    """
    Hashes record content and optionally anchors the digest externally.

    Usage:
        >>> anchor = IntegrityAnchor(domain_tag="MEMFABRIC_INTEGRITY")
        >>> digest = anchor.compute_hash("evidence-42", "case-7")
        >>> len(digest)
        128
    """

    def __init__(
        self,
        domain_tag: str = DEFAULT_DOMAIN_TAG,
        ledger: Optional[LedgerClient] = None,
        enabled: bool = True,
        max_pending: int = 10000,
    ):
        self.domain_tag = domain_tag
        self.ledger = ledger
        self.enabled = enabled
        self._pending: Deque[Tuple[str, Dict[str, Any]]] = deque(maxlen=max_pending)

    @property
    def can_anchor(self) -> bool:
        return self.enabled and self.ledger is not None

    def compute_hash(self, content: str | bytes, namespace: str) -> str:
        return compute_integrity_hash(content, namespace, self.domain_tag)

    def verify(self, content: str | bytes, namespace: str, digest: str) -> bool:
        """Whether content still hashes to the recorded digest."""
        return self.compute_hash(content, namespace) == digest

    async def anchor(self, digest: str, metadata: Optional[Dict[str, Any]] = None) -> AnchorReceipt:
        """
        Publish a digest. Never raises for ledger failures.

        Returns:
            AnchorReceipt with anchored=False and the error text on failure
        """
        metadata = dict(metadata or {})
        if not self.can_anchor:
            return AnchorReceipt(digest=digest, anchored=False, error="anchoring disabled", metadata=metadata)

        try:
            reference = await self.ledger.publish(digest, metadata)
        except AnchorFailure as e:
            logger.warning("anchor_failed", digest=digest[:16], record_id=metadata.get("record_id"), error=str(e))
            self._pending.append((digest, metadata))
            return AnchorReceipt(digest=digest, anchored=False, error=str(e), metadata=metadata)

        return AnchorReceipt(digest=digest, anchored=True, reference=reference, metadata=metadata)

    def pending(self) -> List[Tuple[str, Dict[str, Any]]]:
        return list(self._pending)

    async def retry_pending(self) -> List[AnchorReceipt]:
        """Retry every queued digest once; failures are queued again."""
        batch = list(self._pending)
        self._pending.clear()
        receipts = []
        for digest, metadata in batch:
            receipts.append(await self.anchor(digest, metadata))
        return receipts

    async def close(self) -> None:
        if self.ledger is not None:
            await self.ledger.close()
