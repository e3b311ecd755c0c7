"""Main orchestrator for an audit run"""

import asyncio
import time
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .configuration import AuditConfiguration
from .exceptions import AuditError
from .interfaces import AuditContext, IAuditModule
from .models import AuditSummary, ModuleResult, ModuleState, ResourceRecord, utc_now
from ..analyzers.activity_tracker import ActivityTracker
from ..analyzers.cost_analyzer import CostAnalyzer
from ..analyzers.orphan_detector import OrphanDetector
from ..auth.manager import AuthenticationManager, SubscriptionInfo
from ..cleanup.recommender import CleanupRecommender, RecommendationInputs
from ..fetcher.inventory import ResourceFetcher
from ..reporting.summary import generated_stamp, render_run_summary
from ..reporting.writers import ReportWriter
from ..utils.logger import setup_logger
from ..utils.retry import RetryPolicy

INVENTORY_STAGE = "inventory"
CLEANUP_STAGE = "cleanup"


class ModuleRegistry:
    """Registry for the independent analysis modules"""

    def __init__(self):
        self.logger = setup_logger(self.__class__.__name__)
        self._modules: Dict[str, IAuditModule] = {}
        self._enabled_modules: List[str] = []

    def register_default_modules(self, config: AuditConfiguration) -> None:
        defaults = [
            (CostAnalyzer(), config.enable_cost_analysis),
            (OrphanDetector(), config.enable_orphan_detection),
            (ActivityTracker(), config.enable_activity_tracking),
        ]
        for module, enabled in defaults:
            self.register_module(module)
            if enabled:
                self.enable_module(module.get_module_name())

    def register_module(self, module: IAuditModule) -> None:
        name = module.get_module_name()
        self._modules[name] = module
        self.logger.debug(f"Registered module: {name}")

    def enable_module(self, name: str) -> None:
        if name in self._modules and name not in self._enabled_modules:
            self._enabled_modules.append(name)
            self.logger.debug(f"Enabled module: {name}")

    def get_module(self, name: str) -> IAuditModule:
        if name not in self._modules:
            raise AuditError(f"Unknown module: {name}")
        return self._modules[name]

    def get_all_modules(self) -> List[IAuditModule]:
        return list(self._modules.values())

    def is_enabled(self, name: str) -> bool:
        return name in self._enabled_modules


class AuditOrchestrator:
    """Run the inventory, the analysis modules and cleanup synthesis in two barriers

    Setup errors (missing tool, authorization, validation) are raised before
    any inventory query. After that, every stage failure is recorded in the
    returned summary instead of being raised.
    """

    def __init__(
        self,
        config: AuditConfiguration,
        auth_manager: Optional[AuthenticationManager] = None,
        registry: Optional[ModuleRegistry] = None,
        output_overrides: Optional[Mapping[str, str]] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config
        self.clock = clock
        self.logger = setup_logger(self.__class__.__name__)
        self.retry_policy = RetryPolicy(config.retry_attempts, config.retry_delay_seconds)
        self.auth_manager = auth_manager or AuthenticationManager(
            config.auth_method, self.retry_policy, config.request_timeout_seconds
        )
        if registry is None:
            registry = ModuleRegistry()
            registry.register_default_modules(config)
        self.registry = registry
        self.writer = ReportWriter(config.output_dir, config.report_date, config.output_format, output_overrides)

    async def run(self) -> AuditSummary:
        """Full pipeline: inventory, concurrent analysis, synthesis, summary"""
        start = time.monotonic()
        subscription, clients = await self._prepare()
        summary = self._new_summary(subscription)

        inventory_result = await self._collect_inventory(subscription, clients)
        summary.stages.append(inventory_result)
        context = self._context(subscription, clients, inventory_result)

        modules = self.registry.get_all_modules()
        if inventory_result.state == ModuleState.FAILED:
            self.logger.error("Inventory collection failed; skipping analysis modules")
            module_results = [self._skipped(m.get_module_name(), "inventory unavailable") for m in modules]
        else:
            module_results = await self._run_modules(context, modules)
        summary.stages.extend(module_results)

        summary.stages.append(await self._synthesize(context, module_results))
        return self._finish(summary, start)

    async def run_module(self, name: str) -> AuditSummary:
        """Inventory plus a single analysis module; inventory is written only when it is the target"""
        start = time.monotonic()
        subscription, clients = await self._prepare()
        summary = self._new_summary(subscription)

        inventory_result = await self._collect_inventory(subscription, clients, write=(name == INVENTORY_STAGE))
        if name == INVENTORY_STAGE:
            summary.stages.append(inventory_result)
            return self._finish(summary, start, write_summary=False)

        module = self.registry.get_module(name)
        if inventory_result.state == ModuleState.FAILED:
            summary.stages.append(inventory_result)
            summary.stages.append(self._skipped(name, "inventory unavailable"))
        else:
            context = self._context(subscription, clients, inventory_result)
            summary.stages.extend(await self._run_modules(context, [module], respect_enabled=False))
        return self._finish(summary, start, write_summary=False)

    async def run_cleanup(self, input_dir: str) -> AuditSummary:
        """Synthesis over the reports of an earlier run"""
        start = time.monotonic()
        resource_client = None
        subscription = SubscriptionInfo(subscription_id=self.config.subscription, display_name=self.config.subscription)
        if self.config.tagging_allowed:
            subscription, clients = await self._prepare()
            resource_client = clients['resource']

        summary = self._new_summary(subscription)
        recommender = CleanupRecommender(
            self.config, self.writer, resource_client, self.retry_policy, subscription.subscription_id
        )
        now = self.clock()
        summary.stages.append(await self._guarded_synthesis(lambda: recommender.run(input_dir=input_dir, now=now)))
        return self._finish(summary, start, write_summary=False)

    async def _prepare(self) -> Tuple[SubscriptionInfo, Dict[str, Any]]:
        """Prerequisites, subscription and resource group checks; raises before any inventory query"""
        self.auth_manager.check_prerequisites()
        subscription = await asyncio.to_thread(self.auth_manager.resolve_subscription, self.config.subscription)
        await asyncio.to_thread(
            self.auth_manager.validate_resource_groups, subscription.subscription_id, self.config.resource_groups
        )
        clients = self.auth_manager.get_clients_for_subscription(subscription.subscription_id)
        return subscription, clients

    def _new_summary(self, subscription: SubscriptionInfo) -> AuditSummary:
        run_id = str(uuid.uuid4())
        self.logger.info(f"Starting audit run {run_id} for subscription {subscription.subscription_id}")
        return AuditSummary(
            run_id=run_id,
            report_date=self.config.report_date,
            subscription_id=subscription.subscription_id,
            subscription_name=subscription.display_name,
            resource_groups=list(self.config.resource_groups),
            started_at=self.clock(),
            dry_run=self.config.dry_run,
        )

    def _context(
        self,
        subscription: SubscriptionInfo,
        clients: Dict[str, Any],
        inventory_result: ModuleResult,
    ) -> AuditContext:
        return AuditContext(
            config=self.config,
            subscription_id=subscription.subscription_id,
            clients=clients,
            writer=self.writer,
            retry_policy=self.retry_policy,
            subscription_name=subscription.display_name,
            inventory=tuple(inventory_result.records.get('inventory', [])),
            clock=self.clock,
        )

    async def _collect_inventory(
        self,
        subscription: SubscriptionInfo,
        clients: Dict[str, Any],
        write: bool = True,
    ) -> ModuleResult:
        result = ModuleResult(name=INVENTORY_STAGE)
        start = time.monotonic()
        fetcher = ResourceFetcher(clients['graph'], self.retry_policy, self.config.excluded_resource_types)

        try:
            inventory: List[ResourceRecord] = await asyncio.to_thread(
                fetcher.fetch,
                subscription.subscription_id,
                self.config.resource_groups,
                subscription.display_name,
            )
            result.records = {'inventory': inventory}
            if write:
                result.files.append(self.writer.write_records(INVENTORY_STAGE, ResourceRecord, inventory))
        except Exception as e:
            self.logger.error(f"Inventory stage failed: {e}")
            result.state = ModuleState.FAILED
            result.error = str(e)
            result.records = {}

        result.duration_seconds = time.monotonic() - start
        return result

    async def _run_modules(
        self,
        context: AuditContext,
        modules: List[IAuditModule],
        respect_enabled: bool = True,
    ) -> List[ModuleResult]:
        """Run modules concurrently; a failure or timeout never affects another module"""

        semaphore = asyncio.Semaphore(self.config.parallel_jobs)
        timeout = self.config.module_timeout_seconds

        async def run_one(module: IAuditModule) -> ModuleResult:
            name = module.get_module_name()
            if respect_enabled and not self.registry.is_enabled(name):
                return self._skipped(name, "disabled by configuration")
            async with semaphore:
                self.logger.info(f"Running module: {name}")
                try:
                    result = await asyncio.wait_for(module.execute(context), timeout=timeout)
                except asyncio.TimeoutError:
                    self.logger.error(f"Module {name} timed out after {timeout} seconds")
                    return module.failed(TimeoutError(f"timed out after {timeout} seconds"))
                except Exception as e:
                    self.logger.error(f"Module {name} failed: {e}")
                    return module.failed(e)
                self.logger.info(f"Module {name} finished: {result.state.value}")
                return result

        results = await asyncio.gather(*[run_one(m) for m in modules], return_exceptions=True)

        collected = []
        for module, result in zip(modules, results):
            if isinstance(result, BaseException):
                collected.append(module.failed(result))
            else:
                collected.append(result)
        return collected

    async def _synthesize(self, context: AuditContext, module_results: List[ModuleResult]) -> ModuleResult:
        records = {r.name: r.records for r in module_results}
        inputs = RecommendationInputs(
            inventory=list(context.inventory),
            orphans=list(records.get('orphans', {}).get('orphans', [])),
            cost_breakdown=list(records.get('costs', {}).get('breakdown', [])),
            ownership=list(records.get('activity', {}).get('ownership', [])),
        )
        recommender = CleanupRecommender(
            self.config, self.writer, context.clients.get('resource'), self.retry_policy, context.subscription_id
        )
        now = self.clock()
        return await self._guarded_synthesis(lambda: recommender.run(inputs=inputs, now=now))

    async def _guarded_synthesis(self, run) -> ModuleResult:
        start = time.monotonic()
        try:
            result = await asyncio.to_thread(run)
        except Exception as e:
            self.logger.error(f"Cleanup synthesis failed: {e}")
            result = ModuleResult(name=CLEANUP_STAGE, state=ModuleState.FAILED, error=str(e))
        result.duration_seconds = time.monotonic() - start
        return result

    def _skipped(self, name: str, reason: str) -> ModuleResult:
        return ModuleResult(name=name, state=ModuleState.SKIPPED, warnings=[reason])

    def _finish(self, summary: AuditSummary, start: float, write_summary: bool = True) -> AuditSummary:
        summary.duration_seconds = time.monotonic() - start
        if write_summary:
            path = self.writer.path_for("summary", extension=".txt")
            try:
                text = render_run_summary(summary, generated_stamp(self.clock()))
                self.writer.write_text(path, text, view="summary")
                summary.summary_file = str(path)
            except OSError as e:
                self.logger.error(f"Failed to write run summary: {e}")

        failed = [stage.name for stage in summary.failed_stages]
        self.logger.info(
            f"Audit run {summary.run_id} completed in {summary.duration_seconds:.1f}s"
            + (f" with failed stages: {', '.join(failed)}" if failed else "")
        )
        return summary
