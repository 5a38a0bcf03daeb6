"""
Unit tests for the fixture-backed fleet adapters
"""

import pytest

from fleetheal.adapters.fixture import FixtureFleet
from fleetheal.core.base import BlockingActuatorAdapter, BlockingProbeAdapter
from fleetheal.core.exceptions import ConfigLoadError, RemoteCallError
from fleetheal.core.types import ErrorKind, RawHealthData, RepairActionKind, RepairOutcome, ScopeSpec
from fleetheal.resilience.backoff import classify
from helpers import NOW, FixedClock

FLEET = {
    "sites": {"HQ": ["DC01", "DC02"], "Branch": ["DC03"]},
    "nodes": {
        "DC02": {
            "errors": ["The RPC server is unavailable"],
            "partners": [{"partner": "DC01", "last_success_hours_ago": 26}],
            "repair": {"success": True, "heals": True},
        },
        "DC03": {"unreachable": "Access is denied"},
    },
}


class TestFixtureFleet:
    """Test the fixture fleet"""

    def test_sites_and_nodes(self):
        fleet = FixtureFleet.from_dict(FLEET)
        assert fleet.resolver.resolve(ScopeSpec()) == ["DC01", "DC02", "DC03"]
        assert set(fleet.nodes) == {"DC01", "DC02", "DC03"}

    def test_nodes_without_sites_get_default_site(self):
        fleet = FixtureFleet(nodes={"DC07": None})
        assert fleet.resolver.sites == ["Default"]

    @pytest.mark.asyncio
    async def test_probe_errors_then_data(self):
        fleet = FixtureFleet.from_dict(FLEET, clock=FixedClock())

        with pytest.raises(RemoteCallError) as exc_info:
            await fleet.probe.probe("DC02")
        assert classify(exc_info.value) is ErrorKind.TRANSIENT

        raw = await fleet.probe.probe("DC02")
        assert raw.partners[0].partner == "DC01"
        assert (NOW - raw.partners[0].last_success).total_seconds() == 26 * 3600
        assert fleet.nodes["DC02"].probe_calls == 2

    @pytest.mark.asyncio
    async def test_unreachable_and_unknown_nodes(self):
        fleet = FixtureFleet.from_dict(FLEET)

        with pytest.raises(RemoteCallError) as exc_info:
            await fleet.probe.probe("DC03")
        assert classify(exc_info.value) is ErrorKind.PERMANENT

        with pytest.raises(RemoteCallError) as exc_info:
            await fleet.probe.probe("DC99")
        assert classify(exc_info.value) is ErrorKind.PERMANENT

    @pytest.mark.asyncio
    async def test_repair_heals(self):
        clock = FixedClock()
        fleet = FixtureFleet.from_dict(FLEET, clock=clock)
        fleet.nodes["DC02"].errors.clear()

        outcome = await fleet.actuator.repair("DC02", RepairActionKind.REPLICATE_FROM_PARTNER, "DC01")
        raw = await fleet.probe.probe("DC02")

        assert outcome.success
        assert fleet.nodes["DC02"].repair_calls == [(RepairActionKind.REPLICATE_FROM_PARTNER, "DC01")]
        assert raw.partners[0].last_success == NOW
        assert raw.failures == []

    @pytest.mark.asyncio
    async def test_repair_failure(self):
        fleet = FixtureFleet(sites={"HQ": ["DC01"]}, nodes={"DC01": {"repair": {"success": False}}})
        outcome = await fleet.actuator.repair("DC01", RepairActionKind.FORCE_SYNC)
        assert not outcome.success
        assert not fleet.nodes["DC01"].healed

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "fleet.yaml"
        path.write_text("sites:\n  HQ: [DC01]\n")
        assert FixtureFleet.from_yaml(path).resolver.sites == ["HQ"]

    def test_from_yaml_missing(self, tmp_path):
        with pytest.raises(ConfigLoadError):
            FixtureFleet.from_yaml(tmp_path / "missing.yaml")


class TestBlockingAdapters:
    """Test thread offloading adapters"""

    @pytest.mark.asyncio
    async def test_probe_adapter(self):
        probe = BlockingProbeAdapter(lambda node: RawHealthData(complete=node == "DC01"))
        assert (await probe.probe("DC01")).complete
        assert not (await probe.probe("DC02")).complete

    @pytest.mark.asyncio
    async def test_actuator_adapter(self):
        calls = []

        def repair(node, kind, partner):
            calls.append((node, kind, partner))
            return RepairOutcome(success=True)

        actuator = BlockingActuatorAdapter(repair)
        outcome = await actuator.repair("DC01", RepairActionKind.FORCE_SYNC)

        assert outcome.success
        assert calls == [("DC01", RepairActionKind.FORCE_SYNC, None)]
