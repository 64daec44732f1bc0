"""Tests for the reconciliation engine."""
import asyncio

import httpx
import pytest
import yaml

from vnf_framework.appliance.models import HealthStatus
from vnf_framework.broker.base import TransportResult
from vnf_framework.broker.client import BrokerClient
from vnf_framework.broker.http import HttpTransport
from vnf_framework.config.inventory import ApplianceInventory
from vnf_framework.engine.reconcile import ReconcileRequest, ReconciliationEngine
from vnf_framework.models import ActionType, FirewallRule, PortForwardingRule

from fakes import ACME_DICTIONARY, FakeFirewallApi, FakeTransport, fast_settings


def device_rule(port: str, source: str = "10.0.0.0/8") -> dict:
    return {"protocol": "tcp", "source": source, "port": port}


def desired(rule_id: str, port: int, external_id=None) -> FirewallRule:
    return FirewallRule(
        id=rule_id,
        source_cidrs=["10.0.0.0/8"],
        start_port=port,
        external_id=external_id,
    )


def make_inventory(rules=None) -> ApplianceInventory:
    return ApplianceInventory(data={
        "secrets": {"ACME_API_TOKEN": "tok"},
        "dictionaries": {"acme": yaml.safe_load(ACME_DICTIONARY)},
        "appliances": {
            "vnf-1": {"network": "net-1", "dictionary": "acme", "management_ip": "10.0.0.5"},
            "vnf-2": {"network": "net-2", "dictionary": "acme", "management_ip": "10.0.0.6"},
        },
        "rules": rules or {},
    })


def make_engine(inventory, transport, **settings) -> ReconciliationEngine:
    engine_settings = fast_settings(**settings)
    return ReconciliationEngine(
        inventory,
        broker=BrokerClient(engine_settings, [transport]),
        settings=engine_settings,
    )


class SlowTransport(FakeTransport):
    """Yields to the event loop on every send so overlapping passes interleave."""

    async def send(self, *args, **kwargs) -> TransportResult:
        await asyncio.sleep(0.01)
        return await super().send(*args, **kwargs)


class ReachableHttpTransport(HttpTransport):
    async def probe(self, address: str, port: int, timeout: float) -> bool:
        return True


def writes(transport: FakeTransport) -> list[tuple[str, str]]:
    return [(c["method"], c["path"]) for c in transport.calls if c["method"] != "GET"]


class TestReconcile:
    """Drift detection and correction for one network."""

    @pytest.fixture
    def api(self):
        return FakeFirewallApi({
            "1": device_rule("22"),
            "2": device_rule("443"),
            "9": device_rule("3389", "0.0.0.0/0"),
        })

    @pytest.fixture
    def inventory(self):
        return make_inventory({"net-1": {"Firewall": [
            {"id": "fw-ssh", "source_cidrs": ["10.0.0.0/8"], "start_port": 22, "external_id": "1"},
            {"id": "fw-web", "source_cidrs": ["10.0.0.0/8"], "start_port": 443, "external_id": "2"},
            {"id": "fw-dns", "source_cidrs": ["10.0.0.0/8"], "start_port": 53, "external_id": "3"},
        ]}})

    @pytest.mark.asyncio
    async def test_missing_and_extra_are_corrected(self, api, inventory):
        """Three desired, two present plus one unknown on the device."""
        transport = FakeTransport(handler=api)
        engine = make_engine(inventory, transport)

        result = await engine.reconcile("net-1")

        assert result.success
        assert result.error_message is None
        assert result.appliance_id == "vnf-1"
        assert result.drift_detected
        assert result.rules_checked == 3
        assert result.missing_rules == 1
        assert result.extra_rules == 1
        assert result.rules_reapplied == 1
        assert result.rules_removed == 1
        assert result.reapplied_ids == {"fw-dns": "100"}
        assert result.services_checked == ["Firewall"]
        assert writes(transport) == [
            ("POST", "/api/v2/firewall/rules"),
            ("DELETE", "/api/v2/firewall/rules/9"),
        ]
        assert sorted(api.rules) == ["1", "100", "2"]

        actions = {a.action_type: a for a in result.actions}
        assert len(result.actions_of(ActionType.NO_ACTION)) == 2
        assert actions[ActionType.REAPPLIED].rule_ref == "fw-dns"
        assert actions[ActionType.REMOVED].rule_ref == "9"

    @pytest.mark.asyncio
    async def test_second_pass_converges(self, api, inventory):
        """New external ids are recorded, so the next pass finds no drift."""
        transport = FakeTransport(handler=api)
        engine = make_engine(inventory, transport)

        await engine.reconcile("net-1")
        stored = {r.id: r.external_id for r in inventory.get_desired_rules("net-1")["Firewall"]}
        transport.calls.clear()
        second = await engine.reconcile("net-1")

        assert stored["fw-dns"] == "100"
        assert second.success
        assert not second.drift_detected
        assert second.rules_reapplied == 0
        assert second.rules_removed == 0
        assert writes(transport) == []

    @pytest.mark.asyncio
    async def test_dry_run_only_flags(self, api, inventory):
        transport = FakeTransport(handler=api)
        engine = make_engine(inventory, transport)

        result = await engine.reconcile("net-1", dry_run=True)

        assert result.success
        assert result.dry_run
        assert result.drift_detected
        assert result.missing_rules == 1
        assert result.extra_rules == 1
        assert result.rules_reapplied == 0
        assert result.rules_removed == 0
        assert writes(transport) == []
        flagged = {a.rule_ref for a in result.actions_of(ActionType.FLAGGED)}
        assert flagged == {"fw-dns", "9"}

    @pytest.mark.asyncio
    async def test_explicit_desired_rules(self, api, inventory):
        """Rules passed by the caller replace the inventory's."""
        transport = FakeTransport(handler=api)
        engine = make_engine(inventory, transport)

        result = await engine.reconcile("net-1", {"Firewall": []}, dry_run=True)

        assert result.rules_checked == 0
        assert result.extra_rules == 3
        assert result.missing_rules == 0

    @pytest.mark.asyncio
    async def test_rule_without_external_id_is_missing(self, api):
        inventory = make_inventory()
        transport = FakeTransport(handler=api)
        engine = make_engine(inventory, transport)

        result = await engine.reconcile(
            "net-1", {"Firewall": [desired("fw-new", 8080)]}, dry_run=True
        )

        assert result.missing_rules == 1
        assert result.extra_rules == 3

    @pytest.mark.asyncio
    async def test_unreachable_appliance(self, api, inventory):
        """Unreachable aborts with an error and zero actions."""
        transport = FakeTransport(handler=api, reachable=False)
        engine = make_engine(inventory, transport)

        result = await engine.reconcile("net-1")

        assert not result.success
        assert "unreachable" in result.error_message
        assert result.actions == []
        assert not result.drift_detected
        assert transport.calls == []
        assert inventory.get_appliance("vnf-1").health == HealthStatus.UNHEALTHY

    @pytest.mark.asyncio
    async def test_contact_recorded(self, api, inventory):
        engine = make_engine(inventory, FakeTransport(handler=api))
        await engine.reconcile("net-1", dry_run=True)
        assert inventory.get_appliance("vnf-1").health == HealthStatus.HEALTHY

    @pytest.mark.asyncio
    async def test_list_failure_aborts_before_corrections(self, inventory):
        """A failed observation leaves the device untouched."""
        transport = FakeTransport(handler=lambda method, path, body: TransportResult(500, "boom"))
        engine = make_engine(inventory, transport, max_retries=1)

        result = await engine.reconcile("net-1")

        assert not result.success
        assert "Listing Firewall" in result.error_message
        assert result.actions == []
        assert writes(transport) == []
        assert len(transport.calls) == 2

    @pytest.mark.asyncio
    async def test_service_without_list_is_skipped(self, api, inventory):
        transport = FakeTransport(handler=api)
        engine = make_engine(inventory, transport)
        rules = {
            "Firewall": inventory.get_desired_rules("net-1")["Firewall"],
            "NAT": [PortForwardingRule(id="pf-1", public_start_port=80, private_ip="192.168.1.2")],
        }

        result = await engine.reconcile("net-1", rules, dry_run=True)

        assert result.services_skipped == ["NAT"]
        assert result.services_checked == ["Firewall"]
        assert result.rules_checked == 3

    @pytest.mark.asyncio
    async def test_failed_correction(self, api, inventory):
        """A rejected create is flagged and the pass reports failure."""
        api.fail_create = True
        transport = FakeTransport(handler=api)
        engine = make_engine(inventory, transport)

        result = await engine.reconcile("net-1")

        assert not result.success
        assert result.error_message == "One or more corrective actions failed"
        assert result.rules_reapplied == 0
        assert result.rules_removed == 1
        failed = [a for a in result.actions_of(ActionType.FLAGGED) if a.rule_ref == "fw-dns"]
        assert len(failed) == 1
        assert "create failed" in failed[0].description

    @pytest.mark.asyncio
    async def test_property_drift_flagged_when_enabled(self, inventory):
        """Matching ids with different fields are flagged, not counted as drift."""
        api = FakeFirewallApi({"1": device_rule("2222")})
        transport = FakeTransport(handler=api)
        engine = make_engine(inventory, transport, flag_property_drift=True)

        result = await engine.reconcile(
            "net-1", {"Firewall": [desired("fw-ssh", 22, "1")]}, dry_run=True
        )

        assert not result.drift_detected
        flagged = result.actions_of(ActionType.FLAGGED)
        assert len(flagged) == 1
        assert "portRange" in flagged[0].description

    @pytest.mark.asyncio
    async def test_property_drift_ignored_by_default(self, inventory):
        api = FakeFirewallApi({"1": device_rule("2222")})
        engine = make_engine(inventory, FakeTransport(handler=api))

        result = await engine.reconcile(
            "net-1", {"Firewall": [desired("fw-ssh", 22, "1")]}, dry_run=True
        )

        assert result.actions_of(ActionType.FLAGGED) == []

    @pytest.mark.asyncio
    async def test_unknown_network(self, inventory):
        engine = make_engine(inventory, FakeTransport())

        result = await engine.reconcile("net-404")

        assert not result.success
        assert "net-404" in result.error_message


class TestReconcileConcurrency:
    """Per-appliance locking and batches."""

    @pytest.mark.asyncio
    async def test_concurrent_trigger_rejected_without_wait(self):
        inventory = make_inventory()
        engine = make_engine(inventory, FakeTransport(handler=FakeFirewallApi()))

        async with engine._lock_for("vnf-1"):
            assert engine.is_running("vnf-1")
            result = await engine.reconcile("net-1", {"Firewall": []}, wait=False)

        assert not result.success
        assert "already running" in result.error_message
        assert not engine.is_running("vnf-1")

    @pytest.mark.asyncio
    async def test_passes_on_one_appliance_are_serialized(self):
        """A queued pass sees the ids recorded by the pass before it."""
        inventory = make_inventory({"net-1": {"Firewall": [
            {"id": "fw-ssh", "source_cidrs": ["10.0.0.0/8"], "start_port": 22, "external_id": "1"},
            {"id": "fw-dns", "source_cidrs": ["10.0.0.0/8"], "start_port": 53, "external_id": "3"},
        ]}})
        api = FakeFirewallApi({"1": device_rule("22")})
        transport = SlowTransport(handler=api)
        engine = make_engine(inventory, transport)

        first, second = await asyncio.gather(
            engine.reconcile("net-1"),
            engine.reconcile("net-1"),
        )

        assert first.success and second.success
        assert first.missing_rules == 1
        assert first.reapplied_ids == {"fw-dns": "100"}
        assert second.missing_rules == 0
        assert second.extra_rules == 0
        assert second.rules_reapplied == 0
        assert second.rules_removed == 0
        assert [c["method"] for c in transport.calls] == ["GET", "POST", "GET"]
        assert writes(transport) == [("POST", "/api/v2/firewall/rules")]
        assert sorted(api.rules) == ["1", "100"]

    @pytest.mark.asyncio
    async def test_reconcile_many(self):
        """One bad network does not stop the others."""
        inventory = make_inventory()
        engine = make_engine(inventory, FakeTransport(handler=FakeFirewallApi({"5": device_rule("22")})))

        results = await engine.reconcile_many([
            ReconcileRequest("net-1", {"Firewall": []}, dry_run=True),
            ReconcileRequest("net-2", {"Firewall": []}, dry_run=True),
            "net-404",
        ])

        assert [r.network_id for r in results] == ["net-1", "net-2", "net-404"]
        assert results[0].success and results[0].extra_rules == 1
        assert results[1].success and results[1].appliance_id == "vnf-2"
        assert not results[2].success


class TestReconcileHttpFailures:
    """Transport failures end up in the result instead of escaping."""

    @pytest.mark.asyncio
    async def test_redirect_loop_recorded(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(302, headers={"Location": str(request.url)})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=True)
        inventory = make_inventory({"net-1": {"Firewall": [
            {"id": "fw-ssh", "source_cidrs": ["10.0.0.0/8"], "start_port": 22, "external_id": "1"},
        ]}})
        engine = make_engine(inventory, ReachableHttpTransport(client=client))

        result = await engine.reconcile("net-1")
        await client.aclose()

        assert not result.success
        assert "redirects" in result.error_message
        assert result.actions == []
