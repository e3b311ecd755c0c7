"""Cleanup recommendation synthesis"""

import csv
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from azure.mgmt.resource.resources.models import Tags, TagsPatchResource

from ..core.configuration import AuditConfiguration
from ..core.exceptions import AuditError
from ..core.models import (
    CostAggregate,
    CostImpact,
    ModuleResult,
    OrphanCategory,
    OrphanFinding,
    Recommendation,
    RecommendationType,
    ReportFile,
    ResourceKind,
    ResourceOwnership,
    ResourceRecord,
    RiskLevel,
    SavingsRange,
    utc_now,
)
from ..reporting.summary import generated_stamp, render_cleanup_summary
from ..reporting.writers import ReportWriter, read_records
from ..utils.logger import setup_logger
from ..utils.retry import RetryPolicy
from ..utils.tags import UNKNOWN
from .script_generator import CleanupScriptGenerator

ORPHAN_SAFETY_CHECKS = ("Check dependencies", "Verify not in use", "Backup if needed")
STOPPED_VM_SAFETY_CHECKS = ("Verify VM purpose", "Check with business owner", "Create VM image backup")
HIGH_COST_SAFETY_CHECKS = ("Review utilization", "Check business requirements", "Validate with owner")
OLD_RESOURCE_SAFETY_CHECKS = ("Review usage logs", "Check last access", "Verify still needed")
OLD_SNAPSHOT_SAFETY_CHECKS = ("Verify snapshot purpose", "Check retention requirements")

SAFETY_TAG_CANDIDATE = "audit-candidate"
SAFETY_TAG_DATE = "audit-date"


class SynthesisState(Enum):
    IDLE = "Idle"
    COLLECTING_INPUTS = "CollectingInputs"
    SCORING = "Scoring"
    SORTED = "Sorted"
    SAFETY_TAGGING = "SafetyTagging"
    SCRIPT_EMITTED = "ScriptEmitted"
    DONE = "Done"


ALLOWED_TRANSITIONS = {
    SynthesisState.IDLE: {SynthesisState.COLLECTING_INPUTS},
    SynthesisState.COLLECTING_INPUTS: {SynthesisState.SCORING},
    SynthesisState.SCORING: {SynthesisState.SORTED},
    SynthesisState.SORTED: {SynthesisState.SAFETY_TAGGING, SynthesisState.SCRIPT_EMITTED},
    SynthesisState.SAFETY_TAGGING: {SynthesisState.SCRIPT_EMITTED},
    SynthesisState.SCRIPT_EMITTED: {SynthesisState.DONE},
    SynthesisState.DONE: set(),
}


@dataclass
class RecommendationInputs:
    """Everything the scorer reads; any part may be empty"""
    inventory: List[ResourceRecord] = field(default_factory=list)
    orphans: List[OrphanFinding] = field(default_factory=list)
    cost_breakdown: List[CostAggregate] = field(default_factory=list)
    ownership: List[ResourceOwnership] = field(default_factory=list)


def _load(path: Path, factory: Callable[[Dict[str, str]], Any], logger) -> List[Any]:
    if not path.exists():
        logger.debug(f"Input not found, treating as empty: {path}")
        return []
    try:
        return read_records(path, factory)
    except (OSError, ValueError, KeyError, csv.Error) as e:
        logger.warning(f"Could not read {path}, treating as empty: {e}")
        return []


def load_inputs_from_directory(
    input_dir: str,
    report_date: str,
    output_format: str = "csv",
) -> RecommendationInputs:
    """Read the reports of an earlier run; missing or unreadable files are empty inputs"""
    logger = setup_logger("CleanupInputs")
    reports = ReportWriter(input_dir, report_date, output_format)
    return RecommendationInputs(
        inventory=_load(reports.path_for("inventory"), ResourceRecord.from_row, logger),
        orphans=_load(reports.path_for("orphans"), OrphanFinding.from_row, logger),
        cost_breakdown=_load(reports.path_for("costs", "breakdown"), CostAggregate.from_row, logger),
        ownership=_load(reports.path_for("activity", "ownership"), ResourceOwnership.from_row, logger),
    )


def sort_recommendations(recommendations: List[Recommendation]) -> List[Recommendation]:
    """Priority ascending, then savings upper bound descending; stable"""
    return sorted(recommendations, key=lambda r: (r.priority, -r.estimated_savings.sort_key))


def deduplicate(recommendations: List[Recommendation]) -> List[Recommendation]:
    """One recommendation per (resource, category), keeping the most urgent then largest saving"""
    best: Dict[Tuple[Any, str], Recommendation] = {}
    for rec in recommendations:
        current = best.get(rec.dedup_key)
        if current is None or (rec.priority, -rec.estimated_savings.sort_key) < (
            current.priority, -current.estimated_savings.sort_key
        ):
            best[rec.dedup_key] = rec
    return list(best.values())


class CleanupRecommender:
    """Turn analysis results into ranked, advisory cleanup recommendations

    Runs the synthesis state machine once per instance. Nothing is ever
    deleted; the only write to Azure is the optional safety tag merge.
    """

    def __init__(
        self,
        config: AuditConfiguration,
        writer: ReportWriter,
        resource_client: Any = None,
        retry_policy: Optional[RetryPolicy] = None,
        subscription_id: str = "",
    ):
        self.logger = setup_logger(self.__class__.__name__)
        self.config = config
        self.policy = config.policy
        self.writer = writer
        self.resource_client = resource_client
        self.retry_policy = retry_policy or RetryPolicy()
        self.subscription_id = subscription_id or config.subscription
        self.script_generator = CleanupScriptGenerator()

        self.state = SynthesisState.IDLE
        self.transitions: List[SynthesisState] = [SynthesisState.IDLE]
        self.inputs = RecommendationInputs()
        self.recommendations: List[Recommendation] = []
        self.tagged: List[Recommendation] = []

    def _advance(self, state: SynthesisState) -> None:
        if state not in ALLOWED_TRANSITIONS[self.state]:
            raise AuditError(f"Invalid synthesis transition {self.state.value} -> {state.value}")
        self.logger.debug(f"Synthesis state {self.state.value} -> {state.value}")
        self.state = state
        self.transitions.append(state)

    def run(
        self,
        inputs: Optional[RecommendationInputs] = None,
        input_dir: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ModuleResult:
        """Collect, score, sort, optionally tag, then emit the reports"""
        result = ModuleResult(name="cleanup")
        now = now or utc_now()

        self.collect(inputs, input_dir)
        self.score(now)
        self.sort()
        if self.config.tagging_allowed:
            failures = self.apply_safety_tags(now)
            if failures:
                result.degrade(f"Safety tagging failed for {failures} resources")
        result.files.extend(self.emit(now))
        self._advance(SynthesisState.DONE)

        result.records = {'recommendations': self.recommendations, 'tagged': self.tagged}
        self.logger.info(f"Cleanup synthesis complete: {len(self.recommendations)} recommendations")
        return result

    def collect(self, inputs: Optional[RecommendationInputs] = None, input_dir: Optional[str] = None) -> None:
        self._advance(SynthesisState.COLLECTING_INPUTS)
        if inputs is None and input_dir:
            inputs = load_inputs_from_directory(input_dir, self.config.report_date, self.config.output_format)
        self.inputs = inputs or RecommendationInputs()
        self.logger.info(
            f"Synthesis inputs: {len(self.inputs.inventory)} resources, {len(self.inputs.orphans)} orphans, "
            f"{len(self.inputs.cost_breakdown)} cost aggregates, {len(self.inputs.ownership)} ownership records"
        )

    def score(self, now: Optional[datetime] = None) -> List[Recommendation]:
        self._advance(SynthesisState.SCORING)
        now = now or utc_now()

        inventory_keys: Set[Tuple[str, str, str, str]] = {r.identity.key for r in self.inputs.inventory}
        owners = {
            o.identity.key: o.created_by
            for o in self.inputs.ownership
            if o.created_by and o.created_by != UNKNOWN
        }

        scored: List[Recommendation] = []
        scored.extend(self._score_orphan(f) for f in self.inputs.orphans)
        scored.extend(self._score_high_cost(a) for a in self.inputs.cost_breakdown if self._is_high_cost(a))
        for record in self.inputs.inventory:
            if record.is_stopped:
                scored.append(self._score_stopped_vm(record))
            age = record.age_days(now)
            if age is not None and age > self.config.old_resource_days:
                scored.append(self._score_old_resource(record))

        finalized = []
        for rec in scored:
            checks = rec.safety_checks
            owner = owners.get(rec.identity.key)
            if owner:
                checks = checks + (f"Confirm with owner {owner}",)
            verified = rec.identity.kind == ResourceKind.RESOURCE_GROUP or rec.identity.key in inventory_keys
            finalized.append(replace(rec, safety_checks=checks, verified=verified))

        self.recommendations = deduplicate(finalized)
        return self.recommendations

    def sort(self) -> List[Recommendation]:
        self._advance(SynthesisState.SORTED)
        self.recommendations = sort_recommendations(self.recommendations)
        return self.recommendations

    def tag_candidates(self) -> List[Recommendation]:
        """High-risk and unverified resources are never tagged"""
        seen = set()
        candidates = []
        for rec in self.recommendations:
            if rec.risk_level == RiskLevel.HIGH or not rec.verified or rec.identity.key in seen:
                continue
            seen.add(rec.identity.key)
            candidates.append(rec)
        return candidates

    def apply_safety_tags(self, now: Optional[datetime] = None) -> int:
        """Merge audit-candidate tags onto eligible resources; returns the failure count"""
        self._advance(SynthesisState.SAFETY_TAGGING)
        if self.resource_client is None:
            raise AuditError("Safety tagging requires a resource management client")

        audit_date = (now or utc_now()).date().isoformat()
        patch = TagsPatchResource(
            operation="Merge",
            properties=Tags(tags={SAFETY_TAG_CANDIDATE: "true", SAFETY_TAG_DATE: audit_date}),
        )

        failures = 0
        for rec in self.tag_candidates():
            scope = rec.identity.resource_id
            try:
                self.retry_policy.call(self.resource_client.tags.update_at_scope, scope, patch)
                self.tagged.append(rec)
                self.logger.debug(f"Tagged {scope}")
            except Exception as e:
                failures += 1
                self.logger.warning(f"Failed to tag {rec.identity.name}: {e}")

        self.logger.info(f"Applied safety tags to {len(self.tagged)} resources")
        return failures

    def emit(self, now: Optional[datetime] = None) -> List[ReportFile]:
        """Write the recommendations, the review script and the summary"""
        self._advance(SynthesisState.SCRIPT_EMITTED)
        files = [self.writer.write_records("cleanup", Recommendation, self.recommendations)]

        script_path = self.writer.path_for("cleanup", "script", ".sh")
        script = self.script_generator.generate(self.recommendations, self.subscription_id, self.config.report_date)
        files.append(self.writer.write_text(script_path, script, view="cleanup-script"))
        script_path.chmod(0o755)

        summary_path = self.writer.path_for("cleanup", "summary", ".txt")
        summary = render_cleanup_summary(
            self.recommendations,
            self.subscription_id,
            files=files + [ReportFile(path=str(summary_path), record_count=0, view="cleanup-summary")],
            dry_run=self.config.dry_run,
            tagging_applied=self.state_visited(SynthesisState.SAFETY_TAGGING),
            tagged_count=len(self.tagged),
            generated=generated_stamp(now),
        )
        files.append(self.writer.write_text(summary_path, summary, view="cleanup-summary"))
        return files

    def state_visited(self, state: SynthesisState) -> bool:
        return state in self.transitions

    def _is_high_cost(self, aggregate: CostAggregate) -> bool:
        return aggregate.total_cost > Decimal(str(self.config.cost_threshold_high))

    def _risk(self, kind: ResourceKind, base: RiskLevel) -> RiskLevel:
        """Compute and database resources never score below the configured floor"""
        if kind == ResourceKind.VIRTUAL_MACHINE or kind.is_database:
            floor = self.policy.compute_min_risk
            return floor if floor.rank > base.rank else base
        return base

    def _score_orphan(self, finding: OrphanFinding) -> Recommendation:
        impact = finding.cost_impact
        kind = finding.identity.kind

        if finding.category == OrphanCategory.STOPPED_VM:
            return self._stopped_vm(finding.identity, impact, finding.location, finding.tags)

        if finding.category == OrphanCategory.EMPTY_RESOURCE_GROUP:
            return Recommendation(
                priority=self.policy.priority_for(CostImpact.LOW),
                identity=finding.identity,
                recommendation_type=RecommendationType.ORPHANED_RESOURCE,
                category=finding.category.value,
                estimated_savings=SavingsRange.parse(self.policy.empty_group_savings),
                risk_level=RiskLevel.LOW,
                action="Delete empty resource group",
                location=finding.location,
                safety_checks=("Confirm no pending deployments", "Check resource locks"),
                tags=finding.tags,
            )

        action = "Create snapshot then delete disk" if kind == ResourceKind.DISK else "Delete resource"
        return Recommendation(
            priority=self.policy.priority_for(impact),
            identity=finding.identity,
            recommendation_type=RecommendationType.ORPHANED_RESOURCE,
            category=finding.category.value,
            estimated_savings=self.policy.orphan_savings_for(impact),
            risk_level=self._risk(kind, RiskLevel.LOW),
            action=action,
            location=finding.location,
            safety_checks=ORPHAN_SAFETY_CHECKS,
            tags=finding.tags,
        )

    def _score_high_cost(self, aggregate: CostAggregate) -> Recommendation:
        savings = aggregate.total_cost * Decimal(str(self.policy.high_cost_savings_factor))
        return Recommendation(
            priority=self.policy.high_cost_priority,
            identity=aggregate.identity,
            recommendation_type=RecommendationType.HIGH_COST,
            category=RecommendationType.HIGH_COST.value,
            estimated_savings=SavingsRange.of(savings.quantize(Decimal("0.01"))),
            risk_level=self._risk(aggregate.identity.kind, self.policy.high_cost_risk),
            action="Right-size or optimize configuration",
            location=aggregate.location,
            safety_checks=HIGH_COST_SAFETY_CHECKS,
        )

    def _score_stopped_vm(self, record: ResourceRecord) -> Recommendation:
        return self._stopped_vm(record.identity, self.policy.vm_impact(record.size), record.location, record.tags)

    def _stopped_vm(self, identity, impact: CostImpact, location: str, tags: Dict[str, str]) -> Recommendation:
        return Recommendation(
            priority=self.policy.priority_for(impact),
            identity=identity,
            recommendation_type=RecommendationType.STOPPED_VM,
            category=RecommendationType.STOPPED_VM.value,
            estimated_savings=self.policy.stopped_vm_savings_for(impact),
            risk_level=self.policy.stopped_vm_risk,
            action="Delete VM and associated resources",
            location=location,
            safety_checks=STOPPED_VM_SAFETY_CHECKS,
            tags=dict(tags),
        )

    def _score_old_resource(self, record: ResourceRecord) -> Recommendation:
        if record.kind == ResourceKind.SNAPSHOT:
            rec_type, savings = RecommendationType.OLD_SNAPSHOT, self.policy.old_snapshot_savings
            action, checks = "Delete old snapshot", OLD_SNAPSHOT_SAFETY_CHECKS
        else:
            rec_type, savings = RecommendationType.OLD_RESOURCE, self.policy.old_resource_savings
            action, checks = "Archive or delete if unused", OLD_RESOURCE_SAFETY_CHECKS

        return Recommendation(
            priority=self.policy.old_resource_priority,
            identity=record.identity,
            recommendation_type=rec_type,
            category=rec_type.value,
            estimated_savings=SavingsRange.parse(savings),
            risk_level=self._risk(record.kind, RiskLevel.LOW),
            action=action,
            location=record.location,
            safety_checks=checks,
            tags=dict(record.tags),
        )
