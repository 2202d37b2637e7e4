"""
Signal normalizer.

Maps adapter output into the canonical NormalizedSignal shape and computes
its dedup hash:

    sha256(canonical_json({tenant, source, type, payload}))

canonical_json sorts keys at every depth and uses compact separators, so two
deliveries of the same logical event (e.g. a webhook retry with reordered
keys) hash identically. The `_metadata` block added to the stored payload
(adapter, original timestamp, ingestion time) is not part of the hash.

The client id is not part of the hash: the same delivery resolved with and
without a client is one event.

Callers with a natural identity (anomalies, calibration breaches) pass an
explicit `dedup_key`. It replaces both type and payload in the hash, so a
payload or direction that changes between runs still collapses to one signal:

    sha256(canonical_json({tenant, source, key}))
"""

import hashlib
import json
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from intelligence.core.exceptions import InvalidPayloadError, InvalidUrgencyError
from intelligence.models import NormalizedSignal, Severity, SignalCategory, Urgency, utc_now


# Category a source's signals are grouped under unless the adapter overrides it
SOURCE_CATEGORIES: Dict[str, str] = {
    "analytics": SignalCategory.ANALYTICS.value,
    "crm": SignalCategory.CRM.value,
    "social": SignalCategory.ENGAGEMENT.value,
    "internal": SignalCategory.WORKFLOW.value,
    "webhook": SignalCategory.WORKFLOW.value,
}

URGENCY_SEVERITY: Dict[Urgency, Severity] = {
    Urgency.LOW: Severity.LOW,
    Urgency.NORMAL: Severity.MEDIUM,
    Urgency.HIGH: Severity.HIGH,
    Urgency.CRITICAL: Severity.CRITICAL,
}

SEVERITY_URGENCY: Dict[Severity, Urgency] = {v: k for k, v in URGENCY_SEVERITY.items()}


def canonical_json(value: Any) -> str:
    """Deterministic JSON: sorted keys at every depth, no whitespace."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def _sha256(document: Mapping[str, Any]) -> str:
    return hashlib.sha256(canonical_json(document).encode("utf-8")).hexdigest()


def compute_dedup_hash(tenant_id: str, source: str, signal_type: str, content: Mapping[str, Any]) -> str:
    return _sha256({
        "tenant": tenant_id,
        "source": source,
        "type": signal_type,
        "payload": content,
    })


def compute_key_hash(tenant_id: str, source: str, dedup_key: Mapping[str, Any]) -> str:
    """Hash for an explicit identity; the signal type is not part of it."""
    return _sha256({"tenant": tenant_id, "source": source, "key": dedup_key})


def parse_urgency(value: Any, default: Urgency = Urgency.NORMAL) -> Urgency:
    """
    Coerce an urgency value, treating None/empty as the default.

    Raises:
        InvalidUrgencyError: For any other value outside low|normal|high|critical.
    """
    if value is None or value == "":
        return default
    try:
        return Urgency(value)
    except ValueError:
        raise InvalidUrgencyError(value) from None


def normalize_signal(
    tenant_id: str,
    source: str,
    signal_type: str,
    data: Mapping[str, Any],
    *,
    urgency: Any = None,
    client_id: Optional[str] = None,
    correlation_key: Optional[str] = None,
    category: Optional[str] = None,
    severity: Optional[Severity] = None,
    metadata: Optional[Mapping[str, Any]] = None,
    occurred_at: Optional[datetime] = None,
    dedup_key: Optional[Mapping[str, Any]] = None,
) -> NormalizedSignal:
    """
    Build a canonical signal.

    Args:
        tenant_id: Owning tenant; required.
        source: Canonical source name (analytics, crm, social, internal, webhook).
        signal_type: Event classification chosen by the adapter.
        data: Event payload; must be a string-keyed mapping.
        urgency: Urgency value or None for NORMAL.
        client_id: Client the event concerns, if any.
        correlation_key: Grouping key for the insight aggregator.
        category: Overrides the source's default category.
        severity: Overrides the urgency-derived severity.
        metadata: Extra fields merged into the payload's `_metadata` block.
        occurred_at: When the event happened; defaults to now.
        dedup_key: Identity used for the hash instead of type and payload.

    Returns:
        NormalizedSignal: Ready for insertion through the router.

    Raises:
        InvalidPayloadError: Missing tenant or non-mapping payload.
        InvalidUrgencyError: Urgency outside the allowed values.
    """
    if not tenant_id:
        raise InvalidPayloadError("tenant_id is required")
    if not isinstance(data, Mapping):
        raise InvalidPayloadError(f"Signal data must be an object, got {type(data).__name__}")

    resolved_urgency = parse_urgency(urgency)
    now = utc_now()
    occurred = occurred_at or now

    content = dict(data)
    content.pop("_metadata", None)
    if dedup_key is not None:
        dedup_hash = compute_key_hash(tenant_id, source, dict(dedup_key))
    else:
        dedup_hash = compute_dedup_hash(tenant_id, source, signal_type, content)

    payload = dict(content)
    payload["_metadata"] = {
        "source": source,
        "original_timestamp": occurred.isoformat(),
        "ingested_at": now.isoformat(),
        **dict(metadata or {}),
    }

    return NormalizedSignal(
        tenant_id=tenant_id,
        source=source,
        signal_type=signal_type,
        category=category or SOURCE_CATEGORIES.get(source, SignalCategory.WORKFLOW.value),
        payload=payload,
        urgency=resolved_urgency,
        severity=severity or URGENCY_SEVERITY[resolved_urgency],
        client_id=client_id,
        correlation_key=correlation_key,
        dedup_hash=dedup_hash,
        occurred_at=occurred,
    )
