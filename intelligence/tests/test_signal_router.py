"""
Tests for SignalRouter: dedup, route matching and signal lifecycle.
"""

import pytest

from intelligence.core.exceptions import (
    InvalidSignalStateError,
    PayloadFilterError,
    SignalNotFoundError,
    UnsupportedSourceError,
)
from intelligence.models import (
    FilterOperator,
    PayloadFilterCondition,
    SignalRoute,
    SignalStatus,
    Urgency,
)
from intelligence.services.adapters import build_default_registry
from intelligence.services.signal_router import SignalRouter, find_matching_routes
from intelligence.storage import InMemoryStore
from intelligence.tests.conftest import TENANT_ID, make_signal


DEAL_WON = {
    "subscriptionType": "deal.propertyChange",
    "objectId": 4410,
    "properties": {"dealstage": "closedwon", "amount": 12000},
}


@pytest.fixture
def router(store: InMemoryStore) -> SignalRouter:
    return SignalRouter(store, build_default_registry())


def route(workflow_id: str, priority: int = 0, **kwargs) -> SignalRoute:
    return SignalRoute(
        tenant_id=TENANT_ID,
        workflow_id=workflow_id,
        name=workflow_id,
        priority=priority,
        **kwargs,
    )


class TestIngestion:

    @pytest.mark.asyncio
    async def test_fresh_signal_is_persisted_pending(self, router, store):
        result = await router.ingest_signal(TENANT_ID, "crm", DEAL_WON)

        assert result.is_duplicate is False
        assert result.signal.status == SignalStatus.PENDING
        assert result.signal.urgency == Urgency.HIGH
        assert store.signals[result.signal.id] == result.signal

    @pytest.mark.asyncio
    async def test_duplicate_returns_existing_and_skips_routing(self, router, store):
        await router.create_route(route("wf-1", source="crm"))
        first = await router.ingest_signal(TENANT_ID, "hubspot", DEAL_WON)
        second = await router.ingest_signal(TENANT_ID, "crm", dict(reversed(list(DEAL_WON.items()))))

        assert first.workflows_triggered == ["wf-1"]
        assert second.is_duplicate is True
        assert second.signal.id == first.signal.id
        assert second.workflows_triggered == []
        assert second.matching_routes == []
        assert len(store.signals) == 1

    @pytest.mark.asyncio
    async def test_same_payload_for_other_tenant_is_not_a_duplicate(self, router, store):
        await router.ingest_signal(TENANT_ID, "crm", DEAL_WON)
        other = await router.ingest_signal("agency-2", "crm", DEAL_WON)

        assert other.is_duplicate is False
        assert len(store.signals) == 2

    @pytest.mark.asyncio
    async def test_client_resolution_does_not_change_identity(self, router, store):
        first = await router.ingest_signal(TENANT_ID, "webhook", {"type": "form.submitted", "formId": 7}, "c-1")
        second = await router.ingest_signal(TENANT_ID, "webhook", {"type": "form.submitted", "formId": 7})

        assert first.is_duplicate is False
        assert second.is_duplicate is True
        assert second.signal.id == first.signal.id
        assert len(store.signals) == 1

    @pytest.mark.asyncio
    async def test_unsupported_source_writes_nothing(self, router, store):
        with pytest.raises(UnsupportedSourceError):
            await router.ingest_signal(TENANT_ID, "fax", {"a": 1})
        assert store.signals == {}


class TestRouting:

    @pytest.mark.asyncio
    async def test_routes_are_returned_in_priority_order(self, router):
        await router.create_route(route("wf-low", priority=1, source="crm"))
        await router.create_route(route("wf-high", priority=50, source="crm", signal_type="deal_update"))
        await router.create_route(route("wf-mid", priority=10))

        result = await router.ingest_signal(TENANT_ID, "crm", DEAL_WON)

        assert result.workflows_triggered == ["wf-high", "wf-mid", "wf-low"]

    @pytest.mark.asyncio
    async def test_urgency_filter_excludes_signal(self, router):
        await router.create_route(route("wf-critical", urgency_filter=[Urgency.CRITICAL]))
        await router.create_route(route("wf-high", urgency_filter=[Urgency.HIGH, Urgency.CRITICAL]))

        result = await router.ingest_signal(TENANT_ID, "crm", DEAL_WON)

        assert result.workflows_triggered == ["wf-high"]

    @pytest.mark.asyncio
    async def test_payload_filter_must_fully_match(self, router):
        won = PayloadFilterCondition(path="properties.dealstage", operator=FilterOperator.EQ, value="closedwon")
        big = PayloadFilterCondition(path="properties.amount", operator=FilterOperator.GT, value=50000)
        await router.create_route(route("wf-won", payload_filter=[won]))
        await router.create_route(route("wf-big-won", payload_filter=[won, big]))

        result = await router.ingest_signal(TENANT_ID, "crm", DEAL_WON)

        assert result.workflows_triggered == ["wf-won"]

    @pytest.mark.asyncio
    async def test_disabled_and_mismatched_routes_are_ignored(self, router):
        await router.create_route(route("wf-off", enabled=False))
        await router.create_route(route("wf-social", source="social"))
        await router.create_route(route("wf-contact", signal_type="contact_update"))

        result = await router.ingest_signal(TENANT_ID, "crm", DEAL_WON)

        assert result.workflows_triggered == []

    @pytest.mark.asyncio
    async def test_malformed_filter_is_rejected_at_creation(self, router, store):
        bad = PayloadFilterCondition(path="properties..amount", operator=FilterOperator.GT, value=1)
        with pytest.raises(PayloadFilterError):
            await router.create_route(route("wf-bad", payload_filter=[bad]))
        assert store.routes == {}

    @pytest.mark.asyncio
    async def test_stored_route_with_bad_filter_is_skipped(self, router, store):
        await router.create_route(route("wf-good"))
        for bad in (
            PayloadFilterCondition(path="properties..amount", operator=FilterOperator.EQ, value=1),
            PayloadFilterCondition(path="properties.amount", operator=FilterOperator.GT, value="lots"),
        ):
            broken = route("wf-broken", priority=9, payload_filter=[bad])
            store.routes[broken.id] = broken

        result = await router.ingest_signal(TENANT_ID, "crm", DEAL_WON)

        assert result.is_duplicate is False
        assert result.workflows_triggered == ["wf-good"]

    @pytest.mark.asyncio
    async def test_numeric_string_threshold_matches(self, router):
        big = PayloadFilterCondition(path="properties.amount", operator=FilterOperator.GT, value="10000")
        await router.create_route(route("wf-big", payload_filter=[big]))

        result = await router.ingest_signal(TENANT_ID, "crm", DEAL_WON)

        assert result.workflows_triggered == ["wf-big"]

    def test_find_matching_routes_is_pure(self):
        signal = make_signal(payload={"x": 1})
        routes = [route("b", priority=2), route("a", priority=5)]

        assert [r.workflow_id for r in find_matching_routes(signal, routes)] == ["a", "b"]
        assert [r.workflow_id for r in routes] == ["b", "a"]


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_retry_failed_signal(self, router):
        result = await router.ingest_signal(TENANT_ID, "crm", DEAL_WON)
        await router.mark_signal_failed(TENANT_ID, result.signal.id, "workflow timeout")

        retried = await router.retry_signal(TENANT_ID, result.signal.id)

        assert retried.status == SignalStatus.PENDING
        assert retried.retry_count == 1
        assert retried.last_error is None
        assert retried.dedup_hash == result.signal.dedup_hash

    @pytest.mark.asyncio
    async def test_retry_processed_signal_is_rejected(self, router):
        result = await router.ingest_signal(TENANT_ID, "crm", DEAL_WON)
        await router.update_signal_status(TENANT_ID, result.signal.id, SignalStatus.PROCESSED)

        with pytest.raises(InvalidSignalStateError):
            await router.retry_signal(TENANT_ID, result.signal.id)

    @pytest.mark.asyncio
    async def test_signals_are_tenant_scoped(self, router):
        result = await router.ingest_signal(TENANT_ID, "crm", DEAL_WON)

        with pytest.raises(SignalNotFoundError):
            await router.get_signal("agency-2", result.signal.id)
        with pytest.raises(SignalNotFoundError):
            await router.retry_signal(TENANT_ID, "missing-id")

    @pytest.mark.asyncio
    async def test_pending_and_failed_listings(self, router):
        first = await router.ingest_signal(TENANT_ID, "crm", DEAL_WON)
        await router.ingest_signal(TENANT_ID, "analytics", {"sessions": 10}, client_id="c-1")
        await router.mark_signal_failed(TENANT_ID, first.signal.id, "boom")

        pending = await router.get_pending_signals(TENANT_ID)
        failed = await router.get_failed_signals(TENANT_ID)

        assert [s.source for s in pending] == ["analytics"]
        assert [s.id for s in failed] == [first.signal.id]
        assert failed[0].last_error == "boom"

    @pytest.mark.asyncio
    async def test_delete_route(self, router):
        created = await router.create_route(route("wf-1"))

        assert await router.delete_route("agency-2", created.id) is False
        assert await router.delete_route(TENANT_ID, created.id) is True
        assert await router.list_routes(TENANT_ID) == []
