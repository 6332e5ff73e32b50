"""
Cross-record correlation ("fuse").

Looks up a set of records in the unified index, compares every pair with
a pluggable inconsistency policy and reports contradictions, critical
findings, a confidence figure and a forensic hash over the report.

Policies are chosen by fusion kind:
- contradiction_analysis: any overlapping metadata field with different values
- timeline_harmonization: overlapping date/time fields that disagree
"""

from __future__ import annotations

import itertools
import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from ..core.schemas import Contradiction, CriticalFinding, FusionReport, Record
from ..errors import InvalidRequestError
from ..index.unified import UnifiedIndex
from ..integrity.anchor import IntegrityAnchor
from ..persist.hashing import stable_hash
from ..telemetry import get_logger

logger = get_logger(__name__)

# Bookkeeping fields that legitimately differ between records
IGNORED_FIELDS = frozenset({"record_id", "timestamp", "namespace", "artifact_type", "significance"})

TIME_FIELDS = ("event_time", "occurred_at", "date", "event_date")


class InconsistencyPolicy(ABC):
    """Decides whether two records contradict each other."""

    @abstractmethod
    def compare(self, a: Record, b: Record) -> List[Contradiction]:
        """Contradictions between a and b (empty if consistent)."""


class FieldConflictPolicy(InconsistencyPolicy):
    """
    Two records conflict on a field when both state it with different values.

    Args:
        fields: restrict the comparison to these fields (None = every shared field)
        ignore: fields never compared
        subject_key: only compare records that agree on this field
    """

    def __init__(
        self,
        fields: Optional[Iterable[str]] = None,
        ignore: Iterable[str] = IGNORED_FIELDS,
        subject_key: Optional[str] = None,
    ):
        self.fields = frozenset(fields) if fields is not None else None
        self.ignore = frozenset(ignore)
        self.subject_key = subject_key

    def normalize(self, field: str, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().casefold()
        if isinstance(value, list):
            return sorted(map(str, value))
        return value

    def compare(self, a: Record, b: Record) -> List[Contradiction]:
        if self.subject_key is not None:
            if a.metadata.get(self.subject_key) != b.metadata.get(self.subject_key):
                return []
            if self.subject_key not in a.metadata:
                return []

        shared = set(a.metadata) & set(b.metadata)
        if self.fields is not None:
            shared &= self.fields
        shared -= self.ignore
        if self.subject_key is not None:
            shared.discard(self.subject_key)

        found = []
        for field in sorted(shared):
            va, vb = a.metadata[field], b.metadata[field]
            if self.normalize(field, va) != self.normalize(field, vb):
                found.append(Contradiction(record_a=a.id, record_b=b.id, field=field, value_a=va, value_b=vb))
        return found


def _parse_time(value: Any) -> Optional[datetime]:
    """Epoch seconds or ISO-8601 text; None when the value is not a usable time."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


class TimelineConflictPolicy(FieldConflictPolicy):
    """
    Date/time fields that disagree by more than `tolerance_s` seconds.

    Unparseable values fall back to plain comparison.
    """

    def __init__(self, fields: Iterable[str] = TIME_FIELDS, tolerance_s: float = 0.0,
                 subject_key: Optional[str] = "subject"):
        super().__init__(fields=fields, subject_key=subject_key)
        self.tolerance_s = tolerance_s

    def compare(self, a: Record, b: Record) -> List[Contradiction]:
        found = []
        for c in super().compare(a, b):
            ta, tb = _parse_time(c.value_a), _parse_time(c.value_b)
            if ta is not None and tb is not None and abs((ta - tb).total_seconds()) <= self.tolerance_s:
                continue
            found.append(c)
        return found


def default_policies() -> Dict[str, InconsistencyPolicy]:
    return {
        "contradiction_analysis": FieldConflictPolicy(),
        "timeline_harmonization": TimelineConflictPolicy(),
    }


class EvidenceCorrelator:
    """Runs a fusion kind over records held in the unified index."""

    def __init__(
        self,
        index: UnifiedIndex,
        anchor: IntegrityAnchor,
        policies: Optional[Mapping[str, InconsistencyPolicy]] = None,
        critical_levels: Sequence[str] = ("CRITICAL",),
    ):
        self.index = index
        self.anchor = anchor
        self.policies: Dict[str, InconsistencyPolicy] = dict(policies or default_policies())
        self.critical_levels = tuple(critical_levels)

    def register_policy(self, fusion_kind: str, policy: InconsistencyPolicy) -> None:
        self.policies[fusion_kind] = policy

    def fuse(self, record_ids: Iterable[str], fusion_kind: str = "contradiction_analysis") -> FusionReport:
        """
        Correlate records for pairwise inconsistencies.

        admissibility_score = integrity_ratio * (1 - contradicted_pair_ratio),
        where integrity_ratio is the share of records whose content still
        matches its digest.

        Raises:
            InvalidRequestError: unknown fusion kind or no id given
        """
        policy = self.policies.get(fusion_kind)
        if policy is None:
            raise InvalidRequestError(
                f"unknown fusion kind {fusion_kind!r}; expected one of {sorted(self.policies)}"
            )
        ids = sorted(set(record_ids))
        if not ids:
            raise InvalidRequestError("record_ids must not be empty")

        records, missing = [], []
        for rid in ids:
            record = self.index.get(rid)
            if record is None:
                missing.append(rid)
            else:
                records.append(record)

        integrity_failures = [
            r.id for r in records if not self.anchor.verify(r.content, r.namespace, r.integrity_hash)
        ]

        contradictions: List[Contradiction] = []
        contradicted_pairs = 0
        pairs = list(itertools.combinations(records, 2))
        for a, b in pairs:
            found = policy.compare(a, b)
            if found:
                contradicted_pairs += 1
                contradictions.extend(found)

        findings = [
            CriticalFinding(record_id=r.id, significance=str(r.metadata.get("significance")), summary=r.snippet())
            for r in records
            if str(r.metadata.get("significance", "")).upper() in self.critical_levels
        ]

        if records:
            integrity_ratio = 1 - len(integrity_failures) / len(records)
            consistency = 1 - contradicted_pairs / len(pairs) if pairs else 1.0
            score = round(integrity_ratio * consistency, 4)
        else:
            score = 0.0

        body = {
            "fusion_kind": fusion_kind,
            "record_ids": [r.id for r in records],
            "integrity_hashes": [r.integrity_hash for r in records],
            "contradictions": [c.model_dump() for c in contradictions],
            "critical_findings": [f.model_dump() for f in findings],
            "admissibility_score": score,
            "missing_ids": missing,
        }
        canonical = json.dumps(body, sort_keys=True, separators=(",", ":"), default=str)
        namespaces = sorted({r.namespace for r in records})
        namespace = namespaces[0] if len(namespaces) == 1 else ""

        report = FusionReport(
            fusion_id="FUS_" + stable_hash({"record_ids": ids, "fusion_kind": fusion_kind})[:16].upper(),
            fusion_kind=fusion_kind,
            records_analyzed=len(records),
            critical_findings=findings,
            contradictions=contradictions,
            admissibility_score=score,
            forensic_hash=self.anchor.compute_hash(canonical, namespace),
            missing_ids=missing,
            integrity_failures=integrity_failures,
        )
        logger.info(
            "fusion_completed",
            fusion_id=report.fusion_id,
            kind=fusion_kind,
            analyzed=len(records),
            contradictions=len(contradictions),
            missing=len(missing),
        )
        return report
