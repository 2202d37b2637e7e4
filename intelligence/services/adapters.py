"""
Signal adapters - one per source system.

Each adapter turns a raw, source-specific payload into a NormalizedSignal by
choosing a signal type and an urgency from source heuristics, extracting the
event data, and delegating hashing to the normalizer.

Sources and heuristics:
1. analytics - metric syncs (GA4 traffic/conversions, Search Console ranking)
   - urgency from |positionChange| (>10 critical, >5 high, >2 normal)
     or |percentChange| (>50 critical, >25 high, >10 normal), else low
2. crm - HubSpot-style webhooks keyed by subscriptionType
   - deal creation, deal property change and form submission are high
3. social - LinkedIn-style engagement metrics
   - urgency from |engagementChange| (>30 critical, >15 high), else normal
4. internal - domain events raised inside the platform (explicit type/urgency)
5. webhook - generic webhook envelope (type/event + payload)

The registry resolves a source name to an adapter. Provider names used by
older integrations are aliases (ga4, gsc -> analytics; hubspot -> crm;
linkedin -> social). An unknown source raises UnsupportedSourceError.

Raw payload keys follow the providers' own camelCase wire format.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional

from intelligence.core.exceptions import InvalidPayloadError, UnsupportedSourceError
from intelligence.models import NormalizedSignal, SignalSource, Urgency
from intelligence.services.normalizer import normalize_signal, parse_urgency
from intelligence.services.signal_emitter import crm_deal_correlation_key


def _abs_number(raw: Mapping[str, Any], key: str) -> Optional[float]:
    value = raw.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return abs(float(value))


def _bucket_urgency(magnitude: float, cutoffs: List[tuple], fallback: Urgency) -> Urgency:
    """First (limit, urgency) with magnitude > limit wins."""
    for limit, urgency in cutoffs:
        if magnitude > limit:
            return urgency
    return fallback


class SignalAdapter(ABC):
    """
    Base adapter.

    Subclasses implement determine_type and determine_urgency; they may
    override extract_data, extract_metadata and extract_correlation_key.
    """

    source: SignalSource

    def adapt(
        self,
        tenant_id: str,
        raw: Mapping[str, Any],
        client_id: Optional[str] = None,
    ) -> NormalizedSignal:
        if not isinstance(raw, Mapping):
            raise InvalidPayloadError(f"Raw payload must be an object, got {type(raw).__name__}")

        data = self.extract_data(raw)
        if not isinstance(data, Mapping):
            raise InvalidPayloadError(f"{self.source.value} payload data must be an object")

        return normalize_signal(
            tenant_id,
            self.source.value,
            self.determine_type(raw),
            data,
            urgency=self.determine_urgency(raw),
            client_id=client_id,
            correlation_key=self.extract_correlation_key(raw, client_id),
            category=self.extract_category(raw),
            metadata={"adapter": type(self).__name__, **self.extract_metadata(raw)},
        )

    @abstractmethod
    def determine_type(self, raw: Mapping[str, Any]) -> str:
        ...

    @abstractmethod
    def determine_urgency(self, raw: Mapping[str, Any]) -> Urgency:
        ...

    def extract_data(self, raw: Mapping[str, Any]) -> Any:
        return dict(raw)

    def extract_metadata(self, raw: Mapping[str, Any]) -> Dict[str, Any]:
        return {}

    def extract_correlation_key(self, raw: Mapping[str, Any], client_id: Optional[str]) -> Optional[str]:
        key = raw.get("correlationKey")
        return str(key) if key else None

    def extract_category(self, raw: Mapping[str, Any]) -> Optional[str]:
        return None


# =============================================================================
# Analytics
# =============================================================================


class AnalyticsAdapter(SignalAdapter):
    source = SignalSource.ANALYTICS

    PERCENT_CUTOFFS = [(50, Urgency.CRITICAL), (25, Urgency.HIGH), (10, Urgency.NORMAL)]
    POSITION_CUTOFFS = [(10, Urgency.CRITICAL), (5, Urgency.HIGH), (2, Urgency.NORMAL)]

    def determine_type(self, raw: Mapping[str, Any]) -> str:
        if raw.get("eventType"):
            return str(raw["eventType"])
        if "position" in raw or "positionChange" in raw:
            return "ranking_change"
        if "sessions" in raw or "users" in raw:
            return "traffic_metrics"
        if "conversions" in raw:
            return "conversion_metrics"
        if "pageviews" in raw:
            return "pageview_metrics"
        if "clicks" in raw or "impressions" in raw:
            return "search_performance"
        if "query" in raw:
            return "query_metrics"
        return "general_metrics"

    def determine_urgency(self, raw: Mapping[str, Any]) -> Urgency:
        explicit = raw.get("urgency")
        if explicit in {u.value for u in Urgency}:
            return Urgency(explicit)

        position_change = _abs_number(raw, "positionChange")
        if position_change is not None:
            return _bucket_urgency(position_change, self.POSITION_CUTOFFS, Urgency.LOW)

        return _bucket_urgency(_abs_number(raw, "percentChange") or 0.0, self.PERCENT_CUTOFFS, Urgency.LOW)

    def extract_correlation_key(self, raw: Mapping[str, Any], client_id: Optional[str]) -> Optional[str]:
        explicit = super().extract_correlation_key(raw, client_id)
        if explicit:
            return explicit
        if client_id:
            return f"analytics:{client_id}:{self.determine_type(raw)}"
        return None


# =============================================================================
# CRM
# =============================================================================


class CRMAdapter(SignalAdapter):
    source = SignalSource.CRM

    HIGH_URGENCY_SUBSCRIPTIONS = {"deal.creation", "deal.propertyChange", "form.submission"}

    def determine_type(self, raw: Mapping[str, Any]) -> str:
        subscription = str(raw.get("subscriptionType") or "")
        if subscription.startswith("deal"):
            return "deal_update"
        if subscription.startswith("contact"):
            return "contact_update"
        if subscription.startswith("company"):
            return "company_update"
        if subscription.startswith("form"):
            return "form_submission"
        return "general_crm"

    def determine_urgency(self, raw: Mapping[str, Any]) -> Urgency:
        if raw.get("subscriptionType") in self.HIGH_URGENCY_SUBSCRIPTIONS:
            return Urgency.HIGH
        return Urgency.NORMAL

    def extract_metadata(self, raw: Mapping[str, Any]) -> Dict[str, Any]:
        metadata = {}
        for key in ("eventId", "portalId", "objectId"):
            if key in raw:
                metadata[key] = raw[key]
        return metadata

    def extract_correlation_key(self, raw: Mapping[str, Any], client_id: Optional[str]) -> Optional[str]:
        explicit = super().extract_correlation_key(raw, client_id)
        if explicit:
            return explicit
        if self.determine_type(raw) == "deal_update" and raw.get("objectId") is not None:
            return crm_deal_correlation_key(str(raw["objectId"]))
        return None


# =============================================================================
# Social
# =============================================================================


class SocialAdapter(SignalAdapter):
    source = SignalSource.SOCIAL

    ENGAGEMENT_CUTOFFS = [(30, Urgency.CRITICAL), (15, Urgency.HIGH)]

    def determine_type(self, raw: Mapping[str, Any]) -> str:
        if "engagementRate" in raw:
            return "engagement_metrics"
        if "followers" in raw:
            return "follower_metrics"
        if "impressions" in raw:
            return "reach_metrics"
        return "general_social"

    def determine_urgency(self, raw: Mapping[str, Any]) -> Urgency:
        change = _abs_number(raw, "engagementChange") or 0.0
        return _bucket_urgency(change, self.ENGAGEMENT_CUTOFFS, Urgency.NORMAL)


# =============================================================================
# Internal domain events
# =============================================================================


class InternalAdapter(SignalAdapter):
    """
    Events raised inside the platform, e.g.:

        {"type": "client_record_updated", "urgency": "normal",
         "data": {"clientId": "c-1", "updates": {...}}}
    """

    source = SignalSource.INTERNAL

    def determine_type(self, raw: Mapping[str, Any]) -> str:
        return str(raw.get("type") or "internal_event")

    def determine_urgency(self, raw: Mapping[str, Any]) -> Urgency:
        return parse_urgency(raw.get("urgency"))

    def extract_data(self, raw: Mapping[str, Any]) -> Any:
        return raw["data"] if "data" in raw else dict(raw)

    def extract_metadata(self, raw: Mapping[str, Any]) -> Dict[str, Any]:
        metadata = raw.get("metadata")
        return dict(metadata) if isinstance(metadata, Mapping) else {}

    def extract_category(self, raw: Mapping[str, Any]) -> Optional[str]:
        category = raw.get("category")
        return str(category) if category else None


# =============================================================================
# Generic webhook
# =============================================================================


class WebhookAdapter(SignalAdapter):
    source = SignalSource.WEBHOOK

    def determine_type(self, raw: Mapping[str, Any]) -> str:
        return str(raw.get("type") or raw.get("event") or "webhook_event")

    def determine_urgency(self, raw: Mapping[str, Any]) -> Urgency:
        return parse_urgency(raw.get("urgency"))

    def extract_data(self, raw: Mapping[str, Any]) -> Any:
        return raw["payload"] if "payload" in raw else dict(raw)

    def extract_metadata(self, raw: Mapping[str, Any]) -> Dict[str, Any]:
        webhook_id = raw.get("webhookId") or raw.get("id")
        return {"webhook_id": webhook_id} if webhook_id else {}


# =============================================================================
# Registry
# =============================================================================


SOURCE_ALIASES: Dict[str, str] = {
    "ga4": SignalSource.ANALYTICS.value,
    "gsc": SignalSource.ANALYTICS.value,
    "hubspot": SignalSource.CRM.value,
    "linkedin": SignalSource.SOCIAL.value,
}


class AdapterRegistry:
    """Adapters keyed by canonical source name, with alias resolution."""

    def __init__(self, aliases: Optional[Mapping[str, str]] = None) -> None:
        self._adapters: Dict[str, SignalAdapter] = {}
        self._aliases: Dict[str, str] = dict(aliases or {})

    def register(self, adapter: SignalAdapter) -> None:
        self._adapters[adapter.source.value] = adapter

    def resolve(self, source: str) -> str:
        name = (source or "").strip().lower()
        return self._aliases.get(name, name)

    def has_adapter(self, source: str) -> bool:
        return self.resolve(source) in self._adapters

    def get_adapter(self, source: str) -> SignalAdapter:
        adapter = self._adapters.get(self.resolve(source))
        if adapter is None:
            raise UnsupportedSourceError(source)
        return adapter

    def supported_sources(self) -> List[str]:
        return sorted(self._adapters)

    def adapt(
        self,
        tenant_id: str,
        source: str,
        raw: Mapping[str, Any],
        client_id: Optional[str] = None,
    ) -> NormalizedSignal:
        return self.get_adapter(source).adapt(tenant_id, raw, client_id)


def build_default_registry() -> AdapterRegistry:
    registry = AdapterRegistry(SOURCE_ALIASES)
    for adapter in (AnalyticsAdapter(), CRMAdapter(), SocialAdapter(), InternalAdapter(), WebhookAdapter()):
        registry.register(adapter)
    return registry
