"""
Tests for the audit orchestrator.

Test Coverage:
    - Module registry defaults and lookup
    - Full run: inventory barrier, concurrent modules, synthesis, run summary
    - Failure isolation, timeouts and disabled modules
    - Timed-out blocking modules do not delay the end of the run
    - Injected clock drives age-based scoring
    - Setup errors raised before any inventory query
    - Single-module and cleanup-only runs
"""

import asyncio
import threading
import time
from dataclasses import replace
from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from azure.core.exceptions import HttpResponseError

from azure_resource_auditor.auth.manager import SubscriptionInfo
from azure_resource_auditor.core.exceptions import AuditError, InventoryFetchError, ValidationError
from azure_resource_auditor.core.interfaces import IAuditModule
from azure_resource_auditor.core.models import ModuleResult, ModuleState, ResourceRecord
from azure_resource_auditor.core.orchestrator import AuditOrchestrator, ModuleRegistry
from azure_resource_auditor.reporting.writers import read_records

from conftest import NOW, SUBSCRIPTION_ID, make_record, sdk_resource

FETCHER_PATH = "azure_resource_auditor.core.orchestrator.ResourceFetcher"


class StubModule(IAuditModule):
    """Analysis module returning a canned result."""

    def __init__(self, name, state=ModuleState.SUCCEEDED, error=None, records=None):
        self.name = name
        self.state = state
        self.error = error
        self.records = records or {}
        self.calls = 0

    def get_module_name(self):
        return self.name

    def run(self, context):
        self.calls += 1
        if self.error:
            raise self.error
        return ModuleResult(name=self.name, state=self.state, records=self.records)


class SlowModule(StubModule):
    """Module whose execution never finishes in time."""

    async def execute(self, context):
        await asyncio.sleep(5)
        return ModuleResult(name=self.name)


class BlockingModule(StubModule):
    """Module stuck in a blocking call until released."""

    def __init__(self, name, release):
        super().__init__(name)
        self.release = release

    def run(self, context):
        self.release.wait(3)
        return super().run(context)


class TrackingModule(StubModule):
    """Module that records how many modules run at the same time."""

    def __init__(self, name, tracker):
        super().__init__(name)
        self.tracker = tracker

    async def execute(self, context):
        self.tracker['active'] += 1
        self.tracker['peak'] = max(self.tracker['peak'], self.tracker['active'])
        await asyncio.sleep(0.01)
        self.tracker['active'] -= 1
        return ModuleResult(name=self.name)


def make_registry(*modules, disabled=()):
    registry = ModuleRegistry()
    for module in modules:
        registry.register_module(module)
        if module.get_module_name() not in disabled:
            registry.enable_module(module.get_module_name())
    return registry


@pytest.fixture
def auth_manager(clients):
    manager = MagicMock()
    manager.resolve_subscription.return_value = SubscriptionInfo(SUBSCRIPTION_ID, "Production")
    manager.get_clients_for_subscription.return_value = clients
    return manager


@pytest.fixture
def fetcher():
    with patch(FETCHER_PATH) as fetcher_cls:
        fetcher_cls.return_value.fetch.return_value = [make_record("vm01")]
        yield fetcher_cls


class TestModuleRegistry:
    """Tests for ModuleRegistry."""

    def test_default_modules_follow_flags(self, config):
        """Defaults register all modules and enable only those switched on."""
        registry = ModuleRegistry()
        registry.register_default_modules(replace(config, enable_activity_tracking=False))

        names = [m.get_module_name() for m in registry.get_all_modules()]
        assert names == ["costs", "orphans", "activity"]
        assert registry.is_enabled("costs")
        assert not registry.is_enabled("activity")

    def test_unknown_module(self):
        """Looking up an unregistered module is an error."""
        with pytest.raises(AuditError, match="Unknown module"):
            ModuleRegistry().get_module("billing")


class TestAuditRun:
    """Tests for AuditOrchestrator.run."""

    @pytest.mark.asyncio
    async def test_stage_order_and_summary(self, config, auth_manager, fetcher):
        """Inventory, modules and synthesis run in order and a summary is written."""
        registry = make_registry(StubModule("costs"), StubModule("orphans"), StubModule("activity"))
        orchestrator = AuditOrchestrator(config, auth_manager=auth_manager, registry=registry)

        summary = await orchestrator.run()

        assert [s.name for s in summary.stages] == ["inventory", "costs", "orphans", "activity", "cleanup"]
        assert summary.exit_code == 0
        assert summary.subscription_name == "Production"
        assert summary.summary_file is not None
        with open(summary.summary_file) as f:
            assert "Module Status:" in f.read()

        inventory_path = orchestrator.writer.path_for("inventory")
        rows = read_records(inventory_path, ResourceRecord.from_row)
        assert [r.identity.name for r in rows] == ["vm01"]

    @pytest.mark.asyncio
    async def test_module_failure_is_isolated(self, config, auth_manager, fetcher):
        """A failing module is recorded without stopping the others."""
        registry = make_registry(
            StubModule("costs"),
            StubModule("orphans", error=RuntimeError("network down")),
            StubModule("activity", state=ModuleState.DEGRADED),
        )

        summary = await AuditOrchestrator(config, auth_manager=auth_manager, registry=registry).run()

        assert summary.stage("orphans").state == ModuleState.FAILED
        assert summary.stage("orphans").error == "network down"
        assert summary.stage("costs").state == ModuleState.SUCCEEDED
        assert summary.stage("activity").state == ModuleState.DEGRADED
        assert summary.stage("cleanup").state == ModuleState.SUCCEEDED
        assert summary.exit_code == 1

    @pytest.mark.asyncio
    async def test_inventory_failure_skips_modules(self, config, auth_manager, fetcher):
        """Without an inventory the modules are skipped and the run fails."""
        fetcher.return_value.fetch.side_effect = InventoryFetchError("graph unavailable")
        costs = StubModule("costs")

        summary = await AuditOrchestrator(config, auth_manager=auth_manager, registry=make_registry(costs)).run()

        assert summary.stage("inventory").state == ModuleState.FAILED
        assert summary.stage("costs").state == ModuleState.SKIPPED
        assert summary.stage("cleanup").state == ModuleState.SUCCEEDED
        assert costs.calls == 0
        assert summary.exit_code == 1

    @pytest.mark.asyncio
    async def test_disabled_module_skipped(self, config, auth_manager, fetcher):
        """Disabled modules are reported as skipped."""
        activity = StubModule("activity")
        registry = make_registry(StubModule("costs"), activity, disabled=("activity",))

        summary = await AuditOrchestrator(config, auth_manager=auth_manager, registry=registry).run()

        assert summary.stage("activity").state == ModuleState.SKIPPED
        assert summary.stage("activity").warnings == ["disabled by configuration"]
        assert activity.calls == 0
        assert summary.exit_code == 0

    @pytest.mark.asyncio
    async def test_module_timeout(self, config, auth_manager, fetcher):
        """A module exceeding its timeout fails alone."""
        quick_config = replace(config, module_timeout_seconds=0.05)
        registry = make_registry(SlowModule("costs"), StubModule("orphans"))

        summary = await AuditOrchestrator(quick_config, auth_manager=auth_manager, registry=registry).run()

        assert summary.stage("costs").state == ModuleState.FAILED
        assert "timed out" in summary.stage("costs").error
        assert summary.stage("orphans").state == ModuleState.SUCCEEDED

    def test_timed_out_blocking_module_does_not_delay_exit(self, config, auth_manager, fetcher):
        """A module stuck in a blocking call no longer holds up the end of the run."""
        release = threading.Event()
        quick_config = replace(config, module_timeout_seconds=0.1)
        registry = make_registry(BlockingModule("costs", release), StubModule("orphans"))
        orchestrator = AuditOrchestrator(quick_config, auth_manager=auth_manager, registry=registry)

        start = time.monotonic()
        try:
            summary = asyncio.run(orchestrator.run())
            elapsed = time.monotonic() - start
        finally:
            release.set()

        assert elapsed < 1.5
        assert summary.stage("costs").state == ModuleState.FAILED
        assert "timed out" in summary.stage("costs").error
        assert summary.stage("orphans").state == ModuleState.SUCCEEDED

    @pytest.mark.asyncio
    async def test_parallel_jobs_limit(self, config, auth_manager, fetcher):
        """No more modules run at once than parallel_jobs allows."""
        tracker = {'active': 0, 'peak': 0}
        registry = make_registry(*(TrackingModule(name, tracker) for name in ("costs", "orphans", "activity")))

        await AuditOrchestrator(
            replace(config, parallel_jobs=1), auth_manager=auth_manager, registry=registry
        ).run()

        assert tracker['peak'] == 1

    @pytest.mark.asyncio
    async def test_unknown_resource_group_fails_before_inventory(self, config, auth_manager, fetcher):
        """Resource group validation errors surface before any inventory query."""
        auth_manager.validate_resource_groups.side_effect = ValidationError("Resource group(s) not found: rg-missing")
        scoped = replace(config, resource_groups=("rg-missing",))

        with pytest.raises(ValidationError) as exc_info:
            await AuditOrchestrator(scoped, auth_manager=auth_manager, registry=make_registry()).run()

        assert exc_info.value.exit_code == 3
        fetcher.return_value.fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_unattached_disk_end_to_end(self, config, auth_manager, clients, fetcher):
        """A 600GB unattached disk flows from detection to a priority 1 recommendation."""
        disk_record = make_record("data-disk", "Microsoft.Compute/disks", size="600 GB")
        fetcher.return_value.fetch.return_value = [disk_record]
        clients['compute'].disks.list.return_value = [
            sdk_resource("rg-app", "Microsoft.Compute/disks", "data-disk",
                         managed_by=None, managed_by_extended=None, disk_size_gb=600,
                         sku=SimpleNamespace(name="Premium_LRS", tier="Premium")),
        ]
        only_orphans = replace(config, enable_cost_analysis=False, enable_activity_tracking=False)

        summary = await AuditOrchestrator(only_orphans, auth_manager=auth_manager, clock=lambda: NOW).run()

        orphans = summary.stage("orphans").records['orphans']
        assert len(orphans) == 1
        assert orphans[0].category.value == "Unattached Disk"
        assert orphans[0].cost_impact.value == "High"

        recommendations = summary.stage("cleanup").records['recommendations']
        assert len(recommendations) == 1
        assert recommendations[0].priority == 1
        assert recommendations[0].action == "Create snapshot then delete disk"
        assert summary.stage("costs").state == ModuleState.SKIPPED
        assert summary.exit_code == 0

    @pytest.mark.asyncio
    async def test_clock_drives_old_resource_rule(self, config, auth_manager, fetcher):
        """Resource age is measured against the injected clock, not the wall clock."""
        fetcher.return_value.fetch.return_value = [make_record("vm01", created_days_ago=10)]
        registry = make_registry()

        fresh = await AuditOrchestrator(config, auth_manager=auth_manager, registry=registry, clock=lambda: NOW).run()
        later = await AuditOrchestrator(
            config, auth_manager=auth_manager, registry=registry, clock=lambda: NOW + timedelta(days=400)
        ).run()

        assert fresh.stage("cleanup").records['recommendations'] == []
        old = later.stage("cleanup").records['recommendations']
        assert [r.recommendation_type.value for r in old] == ["Old Resource"]
        assert fresh.started_at == NOW

    @pytest.mark.asyncio
    async def test_cost_api_failure_degrades(self, config, auth_manager, clients, fetcher):
        """A Cost Management failure falls back to estimates and the run still exits zero."""
        error = HttpResponseError(message="Forbidden")
        error.status_code = 403
        clients['cost'].query.usage.side_effect = error
        only_costs = replace(config, enable_orphan_detection=False, enable_activity_tracking=False)

        summary = await AuditOrchestrator(only_costs, auth_manager=auth_manager).run()

        assert summary.stage("costs").state == ModuleState.DEGRADED
        assert summary.stage("costs").records['estimates']
        assert summary.exit_code == 0


class TestPartialRuns:
    """Tests for run_module and run_cleanup."""

    @pytest.mark.asyncio
    async def test_inventory_only(self, config, auth_manager, fetcher):
        """The inventory command writes only the inventory report."""
        orchestrator = AuditOrchestrator(config, auth_manager=auth_manager, registry=make_registry())

        summary = await orchestrator.run_module("inventory")

        assert [s.name for s in summary.stages] == ["inventory"]
        assert orchestrator.writer.path_for("inventory").exists()
        assert summary.summary_file is None

    @pytest.mark.asyncio
    async def test_single_module_ignores_enabled_flag(self, config, auth_manager, fetcher):
        """A module command runs its module even when disabled in config."""
        costs = StubModule("costs")
        orchestrator = AuditOrchestrator(
            config, auth_manager=auth_manager, registry=make_registry(costs, disabled=("costs",))
        )

        summary = await orchestrator.run_module("costs")

        assert [s.name for s in summary.stages] == ["costs"]
        assert costs.calls == 1
        assert not orchestrator.writer.path_for("inventory").exists()

    @pytest.mark.asyncio
    async def test_single_module_inventory_failure(self, config, auth_manager, fetcher):
        """A failed inventory skips the requested module."""
        fetcher.return_value.fetch.side_effect = InventoryFetchError("boom")

        summary = await AuditOrchestrator(
            config, auth_manager=auth_manager, registry=make_registry(StubModule("orphans"))
        ).run_module("orphans")

        assert [s.state for s in summary.stages] == [ModuleState.FAILED, ModuleState.SKIPPED]
        assert summary.exit_code == 1

    @pytest.mark.asyncio
    async def test_cleanup_without_tagging_stays_offline(self, config, auth_manager, tmp_path):
        """Cleanup from earlier reports needs no Azure access unless tagging."""
        orchestrator = AuditOrchestrator(config, auth_manager=auth_manager, registry=make_registry())

        summary = await orchestrator.run_cleanup(str(tmp_path))

        assert [s.name for s in summary.stages] == ["cleanup"]
        assert summary.stage("cleanup").state == ModuleState.SUCCEEDED
        auth_manager.resolve_subscription.assert_not_called()
        assert orchestrator.writer.path_for("cleanup").exists()

    @pytest.mark.asyncio
    async def test_cleanup_with_tagging_uses_resource_client(self, config, auth_manager, clients, tmp_path):
        """Tagging resolves the subscription and uses the resource client."""
        tagging = replace(config, auto_tag=True)
        orchestrator = AuditOrchestrator(tagging, auth_manager=auth_manager, registry=make_registry())

        summary = await orchestrator.run_cleanup(str(tmp_path))

        auth_manager.resolve_subscription.assert_called_once_with(SUBSCRIPTION_ID)
        assert summary.stage("cleanup").state == ModuleState.SUCCEEDED
        clients['resource'].tags.update_at_scope.assert_not_called()
