"""Activity log analysis: who created and changed what"""

from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from ..core.interfaces import AuditContext, IAuditModule
from ..core.models import (
    OLD_AGE_CATEGORY,
    ActivityEvent,
    CreatorSummary,
    DeletionRecord,
    ModificationHistory,
    ModuleResult,
    ReportFile,
    ResourceIdentity,
    ResourceOwnership,
    ResourceRecord,
    utc_now,
)
from ..reporting.summary import generated_stamp, render_activity_summary, render_governance_report
from ..utils.logger import setup_logger
from ..utils.tags import (
    COST_CENTER_TAG_VARIATIONS,
    CREATOR_TAG_VARIATIONS,
    ENVIRONMENT_TAG_VARIATIONS,
    PROJECT_TAG_VARIATIONS,
    UNKNOWN,
    resolve_creator,
    resolve_tag,
)
from ..utils.validation import validate_days_back

INFERRED_OPERATION = "Resource Creation (Inferred)"

AGE_CATEGORIES = (
    (7, "Last 7 days"),
    (30, "Last 30 days"),
    (90, "Last 90 days"),
    (365, "Last year"),
)


def is_deletion(operation: str) -> bool:
    return "delete" in operation.lower()


def is_creation(operation: str) -> bool:
    text = operation.lower()
    return not is_deletion(operation) and ("create" in text or "write" in text)


def is_modification(operation: str) -> bool:
    text = operation.lower()
    return "create" not in text and "delete" not in text


def age_category(created: Optional[datetime], now: Optional[datetime] = None) -> str:
    if not created:
        return "Unknown age"
    days = ((now or utc_now()) - created).days
    for limit, label in AGE_CATEGORIES:
        if days <= limit:
            return label
    return OLD_AGE_CATEGORY


def _value(obj: Any) -> str:
    """Activity log fields are LocalizableString objects or plain strings"""
    if obj is None:
        return ""
    if isinstance(obj, str):
        return obj
    return getattr(obj, 'value', None) or getattr(obj, 'localized_value', None) or ""


def to_activity_event(event: Any, subscription_id: str) -> ActivityEvent:
    """Convert one SDK EventData object"""
    identity = ResourceIdentity.from_resource_id(event.resource_id or "")
    return ActivityEvent(
        event_time=event.event_timestamp,
        operation=_value(event.operation_name),
        status=_value(event.status),
        caller=event.caller or UNKNOWN,
        resource_type=_value(event.resource_type) or identity.resource_type,
        resource_name=identity.name,
        resource_group=event.resource_group_name or identity.resource_group,
        subscription_id=getattr(event, 'subscription_id', None) or subscription_id,
        level=_value(event.level) or "Informational",
    )


def infer_events(inventory: Iterable[ResourceRecord]) -> List[ActivityEvent]:
    """Creation events reconstructed from inventory metadata"""
    events = [
        ActivityEvent(
            event_time=record.creation_time,
            operation=INFERRED_OPERATION,
            status="Succeeded",
            caller=resolve_creator(record.tags),
            resource_type=record.identity.resource_type,
            resource_name=record.name,
            resource_group=record.resource_group,
            subscription_id=record.identity.subscription_id,
            inferred=True,
        )
        for record in inventory
        if record.creation_time
    ]
    events.sort(key=lambda e: e.event_time, reverse=True)
    return events


def summarize_creators(events: Iterable[ActivityEvent]) -> List[CreatorSummary]:
    totals: Dict[str, Dict[str, Any]] = OrderedDict()
    for event in events:
        entry = totals.setdefault(event.caller, {
            'total': 0, 'create': 0, 'modify': 0, 'delete': 0, 'types': [], 'last': None,
        })
        entry['total'] += 1
        if is_creation(event.operation):
            entry['create'] += 1
        elif is_deletion(event.operation):
            entry['delete'] += 1
        else:
            entry['modify'] += 1
        if event.resource_type and event.resource_type not in entry['types']:
            entry['types'].append(event.resource_type)
        if entry['last'] is None or event.event_time > entry['last']:
            entry['last'] = event.event_time

    summaries = [
        CreatorSummary(
            creator=creator,
            total_actions=entry['total'],
            creation_actions=entry['create'],
            modification_actions=entry['modify'],
            deletion_actions=entry['delete'],
            resource_types=tuple(entry['types']),
            last_activity=entry['last'],
        )
        for creator, entry in totals.items()
    ]
    summaries.sort(key=lambda s: (-s.total_actions, s.creator.lower()))
    return summaries


def summarize_modifications(events: Iterable[ActivityEvent]) -> List[ModificationHistory]:
    grouped: Dict[Tuple[str, str], List[ActivityEvent]] = OrderedDict()
    for event in events:
        if event.inferred or not event.resource_name or not is_modification(event.operation):
            continue
        grouped.setdefault((event.resource_name, event.resource_type), []).append(event)

    history = []
    for (name, resource_type), items in grouped.items():
        latest = max(items, key=lambda e: e.event_time)
        operations = list(OrderedDict.fromkeys(e.operation for e in items))
        history.append(ModificationHistory(
            resource_name=name,
            resource_type=resource_type,
            modification_count=len(items),
            last_modified=latest.event_time,
            last_modifier=latest.caller,
            operations=tuple(operations),
        ))
    history.sort(key=lambda h: (-h.modification_count, h.resource_name.lower()))
    return history


def analyze_deletions(events: Iterable[ActivityEvent]) -> List[DeletionRecord]:
    """Logged delete operations, newest first"""
    deletions = [
        DeletionRecord(
            deletion_time=event.event_time,
            resource_name=event.resource_name,
            resource_type=event.resource_type,
            deleted_by=event.caller,
            resource_group=event.resource_group,
            operation=event.operation,
        )
        for event in events
        if not event.inferred and is_deletion(event.operation)
    ]
    deletions.sort(key=lambda d: d.deletion_time, reverse=True)
    return deletions


def activity_statistics(events: Sequence[ActivityEvent]) -> Dict[str, int]:
    return {
        'total': len(events),
        'creations': sum(1 for e in events if is_creation(e.operation)),
        'modifications': sum(1 for e in events if is_modification(e.operation)),
        'deletions': sum(1 for e in events if is_deletion(e.operation)),
        'callers': len({e.caller for e in events}),
    }


def resolve_ownership(
    inventory: Iterable[ResourceRecord],
    events: Iterable[ActivityEvent],
    now: Optional[datetime] = None,
) -> List[ResourceOwnership]:
    """Creator by tag precedence, then the earliest logged creation, then Unknown"""
    first_creation: Dict[Tuple[str, str, str], ActivityEvent] = {}
    for event in events:
        if event.inferred or not is_creation(event.operation):
            continue
        current = first_creation.get(event.resource_key)
        if current is None or event.event_time < current.event_time:
            first_creation[event.resource_key] = event

    ownership = []
    for record in inventory:
        created_by = resolve_tag(record.tags, CREATOR_TAG_VARIATIONS)
        source = "Tag"
        if not created_by:
            key = (record.resource_group.lower(), record.name.lower(), record.identity.resource_type.lower())
            event = first_creation.get(key)
            created_by, source = (event.caller, "ActivityLog") if event else (UNKNOWN, UNKNOWN)

        ownership.append(ResourceOwnership(
            identity=record.identity,
            created_by=created_by,
            created_by_source=source,
            environment=resolve_tag(record.tags, ENVIRONMENT_TAG_VARIATIONS) or "",
            project=resolve_tag(record.tags, PROJECT_TAG_VARIATIONS) or "",
            cost_center=resolve_tag(record.tags, COST_CENTER_TAG_VARIATIONS) or "",
            age_category=age_category(record.creation_time, now),
        ))
    return ownership


class ActivityTracker(IAuditModule):
    """Collect activity log events and derive creator, change and ownership views"""

    def __init__(self):
        self.logger = setup_logger(self.__class__.__name__)

    def get_module_name(self) -> str:
        return "activity"

    def run(self, context: AuditContext) -> ModuleResult:
        config = context.config
        days_back = validate_days_back(config.days_back)
        result = ModuleResult(name=self.get_module_name())
        now = context.clock()

        try:
            events = self.collect_events(context, days_back, now)
        except Exception as e:
            self.logger.warning(f"Activity log query failed: {e}")
            events = []
            result.degrade(f"Activity log unavailable, creation events inferred from inventory: {e}")
        else:
            if not events:
                result.degrade("No activity log events in the lookback window, creation events inferred from inventory")

        inferred = not events
        if inferred:
            events = infer_events(context.inventory)
            self.logger.info(f"Inferred {len(events)} creation events from resource metadata")

        creators = summarize_creators(events)
        modifications = summarize_modifications(events)
        deletions = analyze_deletions(events)
        ownership = resolve_ownership(context.inventory, events, now)

        writer = context.writer
        result.files.append(writer.write_records("activity", ActivityEvent, events))
        result.files.append(writer.write_records("activity", CreatorSummary, creators, side="creators"))
        result.files.append(writer.write_records("activity", ModificationHistory, modifications, side="modifications"))
        result.files.append(writer.write_records("activity", DeletionRecord, deletions, side="deletion-analysis"))
        result.files.append(writer.write_records("activity", ResourceOwnership, ownership, side="ownership"))
        result.records = {
            'events': events,
            'creators': creators,
            'modifications': modifications,
            'deletions': deletions,
            'ownership': ownership,
        }
        result.files.extend(self._write_summaries(context, result, days_back, inferred, now))

        old = sum(1 for o in ownership if o.age_category == OLD_AGE_CATEGORY)
        self.logger.info(
            f"Activity tracking complete: {len(events)} events, {len(creators)} callers, "
            f"{len(modifications)} modified resources, {len(deletions)} deletions, {old} resources over a year old"
        )
        return result

    def _write_summaries(
        self,
        context: AuditContext,
        result: ModuleResult,
        days_back: int,
        inferred: bool,
        now: datetime,
    ) -> List[ReportFile]:
        writer = context.writer
        generated = generated_stamp(now)
        records = result.records

        governance_path = writer.path_for("activity", "governance-recommendations", ".txt")
        governance = writer.write_text(
            governance_path,
            render_governance_report(records['ownership'], generated),
            view="activity-governance-recommendations",
        )

        subscription = context.subscription_name or context.subscription_id
        summary_path = writer.path_for("activity", "summary", ".txt")
        summary = render_activity_summary(
            subscription,
            days_back,
            activity_statistics(records['events']),
            records['creators'],
            records['deletions'],
            files=result.files,
            inferred=inferred,
            generated=generated,
        )
        return [governance, writer.write_text(summary_path, summary, view="activity-summary")]

    def collect_events(
        self,
        context: AuditContext,
        days_back: int,
        now: Optional[datetime] = None,
    ) -> List[ActivityEvent]:
        """Succeeded events within the lookback window and resource group scope"""
        end = now or utc_now()
        start = end - timedelta(days=days_back)
        query_filter = (
            f"eventTimestamp ge '{start.strftime('%Y-%m-%dT%H:%M:%SZ')}' "
            f"and eventTimestamp le '{end.strftime('%Y-%m-%dT%H:%M:%SZ')}'"
        )
        self.logger.debug(f"Activity log filter: {query_filter}")

        monitor_client = context.clients['monitor']
        raw_events = context.retry_policy.call(
            lambda: list(monitor_client.activity_logs.list(filter=query_filter))
        )

        return self._filter_events(
            (to_activity_event(event, context.subscription_id) for event in raw_events
             if event.operation_name is not None and event.caller),
            context.config.resource_groups,
        )

    def _filter_events(self, events: Iterable[ActivityEvent], resource_groups: Sequence[str]) -> List[ActivityEvent]:
        wanted = {rg.lower() for rg in resource_groups}
        kept = [
            event for event in events
            if event.status.lower() == "succeeded"
            and (not wanted or event.resource_group.lower() in wanted)
        ]
        kept.sort(key=lambda e: e.event_time, reverse=True)
        return kept
