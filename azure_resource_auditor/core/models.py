"""Core data models for the Azure Resource Auditor"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..utils.tags import format_tags, parse_tags


LOW_CONFIDENCE_MARKER = "Low (estimated)"
STOPPED_POWER_STATES = ("VM deallocated", "VM stopped")
OLD_AGE_CATEGORY = "Over 1 year old"


class ResourceKind(Enum):
    """Azure resource kinds the auditor knows how to reason about"""
    VIRTUAL_MACHINE = "Microsoft.Compute/virtualMachines"
    DISK = "Microsoft.Compute/disks"
    SNAPSHOT = "Microsoft.Compute/snapshots"
    NETWORK_INTERFACE = "Microsoft.Network/networkInterfaces"
    PUBLIC_IP = "Microsoft.Network/publicIPAddresses"
    NETWORK_SECURITY_GROUP = "Microsoft.Network/networkSecurityGroups"
    LOAD_BALANCER = "Microsoft.Network/loadBalancers"
    VIRTUAL_NETWORK = "Microsoft.Network/virtualNetworks"
    STORAGE_ACCOUNT = "Microsoft.Storage/storageAccounts"
    SQL_SERVER = "Microsoft.Sql/servers"
    SQL_DATABASE = "Microsoft.Sql/servers/databases"
    COSMOS_DB_ACCOUNT = "Microsoft.DocumentDB/databaseAccounts"
    RESOURCE_GROUP = "Microsoft.Resources/resourceGroups"
    UNKNOWN = "Unknown"

    @classmethod
    def from_type(cls, resource_type: Optional[str]) -> "ResourceKind":
        """Map an ARM type string to a kind, ignoring case"""
        if not resource_type:
            return cls.UNKNOWN
        return _KIND_BY_TYPE.get(resource_type.strip().lower(), cls.UNKNOWN)

    @property
    def is_database(self) -> bool:
        return self in (ResourceKind.SQL_SERVER, ResourceKind.SQL_DATABASE, ResourceKind.COSMOS_DB_ACCOUNT)


_KIND_BY_TYPE = {kind.value.lower(): kind for kind in ResourceKind if kind is not ResourceKind.UNKNOWN}

_TIER_RANK = {"Low": 0, "Medium": 1, "High": 2}


class CostImpact(Enum):
    """Coarse cost bucket used when metered cost is not available"""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"

    @property
    def rank(self) -> int:
        return _TIER_RANK[self.value]

    @classmethod
    def parse(cls, value: str) -> "CostImpact":
        return cls(value.strip().capitalize())


class RiskLevel(Enum):
    """Risk of acting on a recommendation"""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"

    @property
    def rank(self) -> int:
        return _TIER_RANK[self.value]

    @classmethod
    def parse(cls, value: str) -> "RiskLevel":
        return cls(value.strip().capitalize())


class OrphanCategory(Enum):
    """Fixed set of orphan detectors"""
    UNATTACHED_DISK = "Unattached Disk"
    UNASSOCIATED_PUBLIC_IP = "Unassociated Public IP"
    UNUSED_NSG = "Unused NSG"
    ORPHANED_NIC = "Orphaned NIC"
    UNUSED_LOAD_BALANCER = "Unused Load Balancer"
    EMPTY_RESOURCE_GROUP = "Empty Resource Group"
    ORPHANED_SNAPSHOT = "Orphaned Snapshot"
    STOPPED_VM = "Stopped VM"


class RecommendationType(Enum):
    """Recommendation categories emitted by the cleanup stage"""
    ORPHANED_RESOURCE = "Orphaned Resource"
    HIGH_COST = "High Cost Resource"
    STOPPED_VM = "Stopped VM"
    OLD_RESOURCE = "Old Resource"
    OLD_SNAPSHOT = "Old Snapshot"


class ModuleState(Enum):
    """Outcome of a pipeline stage"""
    SUCCEEDED = "succeeded"
    DEGRADED = "degraded"
    FAILED = "failed"
    SKIPPED = "skipped"


class CostTimePeriod(Enum):
    """Reporting windows understood by the cost query"""
    MONTH_TO_DATE = "MonthToDate"
    LAST_MONTH = "TheLastMonth"
    CUSTOM = "Custom"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_datetime(value: Optional[datetime]) -> str:
    return value.isoformat() if value else ""


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp, treating a trailing Z as UTC"""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_decimal(value: Any) -> Decimal:
    """Convert a cost value to Decimal; missing or unparseable values count as zero"""
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")


@dataclass(frozen=True)
class ResourceIdentity:
    """The tuple that uniquely names an Azure resource"""
    subscription_id: str
    resource_group: str
    name: str
    resource_type: str

    @property
    def kind(self) -> ResourceKind:
        return ResourceKind.from_type(self.resource_type)

    @property
    def key(self) -> Tuple[str, str, str, str]:
        """Case-folded identity used for joins across modules"""
        return (
            self.subscription_id.lower(),
            self.resource_group.lower(),
            self.name.lower(),
            self.resource_type.lower(),
        )

    @property
    def resource_id(self) -> str:
        base = f"/subscriptions/{self.subscription_id}/resourceGroups/{self.resource_group}"
        if self.kind == ResourceKind.RESOURCE_GROUP:
            return base
        namespace, _, type_path = self.resource_type.partition("/")
        segments = []
        for type_name, name in zip(type_path.split("/"), self.name.split("/")):
            segments.extend([type_name, name])
        return f"{base}/providers/{namespace}/{'/'.join(segments)}"

    @classmethod
    def from_resource_id(cls, resource_id: str, resource_type: Optional[str] = None) -> "ResourceIdentity":
        """Parse an ARM resource id such as /subscriptions/s/resourceGroups/rg/providers/ns/type/name"""
        parts = [p for p in resource_id.strip().split("/") if p]
        lowered = [p.lower() for p in parts]

        def _after(marker: str) -> str:
            if marker in lowered and lowered.index(marker) + 1 < len(parts):
                return parts[lowered.index(marker) + 1]
            return ""

        subscription_id = _after("subscriptions")
        resource_group = _after("resourcegroups")
        name = parts[-1] if parts else ""
        parsed_type = ResourceKind.RESOURCE_GROUP.value if lowered[-2:-1] == ["resourcegroups"] else ""

        if "providers" in lowered:
            provider_parts = parts[lowered.index("providers") + 1:]
            if len(provider_parts) >= 3:
                type_names = provider_parts[1::2]
                names = provider_parts[2::2]
                parsed_type = "/".join([provider_parts[0]] + type_names[:len(names)])
                name = "/".join(names)

        return cls(
            subscription_id=subscription_id,
            resource_group=resource_group,
            name=name,
            resource_type=resource_type or parsed_type,
        )


@dataclass(frozen=True)
class ResourceRecord:
    """One inventory row, immutable once produced by the fetcher"""
    identity: ResourceIdentity
    location: str = ""
    subscription_name: str = ""
    power_state: str = ""
    provisioning_state: str = ""
    creation_time: Optional[datetime] = None
    sku_name: str = ""
    size: str = ""
    tags: Dict[str, str] = field(default_factory=dict)

    CSV_HEADERS = (
        "SubscriptionName", "SubscriptionId", "ResourceGroup", "Name", "Type", "Location",
        "PowerState", "ProvisioningState", "CreationTime", "SkuName", "Size", "Tags",
    )

    @property
    def name(self) -> str:
        return self.identity.name

    @property
    def resource_group(self) -> str:
        return self.identity.resource_group

    @property
    def kind(self) -> ResourceKind:
        return self.identity.kind

    @property
    def is_stopped(self) -> bool:
        return self.kind == ResourceKind.VIRTUAL_MACHINE and self.power_state in STOPPED_POWER_STATES

    def age_days(self, now: Optional[datetime] = None) -> Optional[int]:
        if not self.creation_time:
            return None
        now = now or utc_now()
        return (now - self.creation_time).days

    def to_row(self) -> Dict[str, str]:
        return {
            "SubscriptionName": self.subscription_name,
            "SubscriptionId": self.identity.subscription_id,
            "ResourceGroup": self.identity.resource_group,
            "Name": self.identity.name,
            "Type": self.identity.resource_type,
            "Location": self.location,
            "PowerState": self.power_state,
            "ProvisioningState": self.provisioning_state,
            "CreationTime": format_datetime(self.creation_time),
            "SkuName": self.sku_name,
            "Size": self.size,
            "Tags": format_tags(self.tags),
        }

    @classmethod
    def from_row(cls, row: Dict[str, str]) -> "ResourceRecord":
        return cls(
            identity=ResourceIdentity(
                subscription_id=row.get("SubscriptionId", ""),
                resource_group=row.get("ResourceGroup", ""),
                name=row.get("Name", ""),
                resource_type=row.get("Type", ""),
            ),
            location=row.get("Location", ""),
            subscription_name=row.get("SubscriptionName", ""),
            power_state=row.get("PowerState", ""),
            provisioning_state=row.get("ProvisioningState", ""),
            creation_time=parse_datetime(row.get("CreationTime")),
            sku_name=row.get("SkuName", ""),
            size=row.get("Size", ""),
            tags=parse_tags(row.get("Tags", "")),
        )


@dataclass(frozen=True)
class CostRecord:
    """Metered cost of one resource for one day and charge type"""
    usage_date: date
    resource_id: str
    resource_type: str
    location: str
    charge_type: str
    cost: Decimal = Decimal("0")

    CSV_HEADERS = ("Date", "ResourceId", "ResourceType", "ResourceLocation", "ChargeType", "Cost")

    def __post_init__(self):
        amount = to_decimal(self.cost)
        if amount < 0:
            raise ValueError(f"Cost must be non-negative, got {amount} for {self.resource_id}")
        object.__setattr__(self, "cost", amount)

    def to_row(self) -> Dict[str, str]:
        return {
            "Date": self.usage_date.isoformat(),
            "ResourceId": self.resource_id,
            "ResourceType": self.resource_type,
            "ResourceLocation": self.location,
            "ChargeType": self.charge_type,
            "Cost": str(self.cost),
        }


@dataclass(frozen=True)
class CostTrend:
    """Daily cost of one resource type"""
    usage_date: date
    resource_type: str
    daily_cost: Decimal = Decimal("0")

    CSV_HEADERS = ("Date", "ResourceType", "DailyCost")

    def to_row(self) -> Dict[str, str]:
        return {
            "Date": self.usage_date.isoformat(),
            "ResourceType": self.resource_type,
            "DailyCost": str(self.daily_cost),
        }


@dataclass(frozen=True)
class CostAggregate:
    """Total metered cost of one resource over the reporting window"""
    resource_id: str
    total_cost: Decimal
    resource_type: str = ""
    location: str = ""

    CSV_HEADERS = ("ResourceId", "TotalCost", "ResourceType", "Location")

    @property
    def identity(self) -> ResourceIdentity:
        return ResourceIdentity.from_resource_id(self.resource_id, self.resource_type or None)

    def to_row(self) -> Dict[str, str]:
        return {
            "ResourceId": self.resource_id,
            "TotalCost": str(self.total_cost),
            "ResourceType": self.resource_type,
            "Location": self.location,
        }

    @classmethod
    def from_row(cls, row: Dict[str, str]) -> "CostAggregate":
        return cls(
            resource_id=row.get("ResourceId", ""),
            total_cost=to_decimal(row.get("TotalCost")),
            resource_type=row.get("ResourceType", ""),
            location=row.get("Location", ""),
        )


@dataclass(frozen=True)
class CostEstimate:
    """Size/SKU based estimate used when the cost API is unavailable"""
    resource_name: str
    resource_type: str
    sku: str
    estimated_monthly_cost: str
    confidence: str = LOW_CONFIDENCE_MARKER
    notes: str = ""

    CSV_HEADERS = ("ResourceName", "ResourceType", "Sku", "EstimatedMonthlyCost", "Confidence", "Notes")

    def to_row(self) -> Dict[str, str]:
        return {
            "ResourceName": self.resource_name,
            "ResourceType": self.resource_type,
            "Sku": self.sku,
            "EstimatedMonthlyCost": self.estimated_monthly_cost,
            "Confidence": self.confidence,
            "Notes": self.notes,
        }


@dataclass(frozen=True)
class CostRecommendation:
    resource_name: str
    resource_type: str
    impact: str
    potential_savings: str
    recommendation: str
    category: str

    CSV_HEADERS = ("ResourceName", "ResourceType", "Impact", "PotentialSavings", "Recommendation", "Category")

    def to_row(self) -> Dict[str, str]:
        return {
            "ResourceName": self.resource_name,
            "ResourceType": self.resource_type,
            "Impact": self.impact,
            "PotentialSavings": self.potential_savings,
            "Recommendation": self.recommendation,
            "Category": self.category,
        }


@dataclass(frozen=True)
class OrphanFinding:
    """A resource flagged by one orphan detector"""
    identity: ResourceIdentity
    category: OrphanCategory
    cost_impact: CostImpact
    location: str = ""
    details: str = ""
    tags: Dict[str, str] = field(default_factory=dict)

    CSV_HEADERS = (
        "SubscriptionId", "ResourceGroup", "Name", "Type", "Location",
        "OrphanType", "CostImpact", "Details", "Tags",
    )

    def to_row(self) -> Dict[str, str]:
        return {
            "SubscriptionId": self.identity.subscription_id,
            "ResourceGroup": self.identity.resource_group,
            "Name": self.identity.name,
            "Type": self.identity.resource_type,
            "Location": self.location,
            "OrphanType": self.category.value,
            "CostImpact": self.cost_impact.value,
            "Details": self.details,
            "Tags": format_tags(self.tags),
        }

    @classmethod
    def from_row(cls, row: Dict[str, str]) -> "OrphanFinding":
        return cls(
            identity=ResourceIdentity(
                subscription_id=row.get("SubscriptionId", ""),
                resource_group=row.get("ResourceGroup", ""),
                name=row.get("Name", ""),
                resource_type=row.get("Type", ""),
            ),
            category=OrphanCategory(row.get("OrphanType", "")),
            cost_impact=CostImpact.parse(row.get("CostImpact") or "Low"),
            location=row.get("Location", ""),
            details=row.get("Details", ""),
            tags=parse_tags(row.get("Tags", "")),
        )


@dataclass(frozen=True)
class StorageAccountReview:
    """Access-tier review of one storage account"""
    identity: ResourceIdentity
    kind: str
    access_tier: str
    location: str = ""
    creation_time: Optional[datetime] = None
    suspicious_activity: str = "Normal"

    CSV_HEADERS = (
        "StorageAccount", "ResourceGroup", "Kind", "AccessTier", "Location", "CreationTime", "SuspiciousActivity",
    )

    @property
    def is_suspicious(self) -> bool:
        return self.suspicious_activity != "Normal"

    def to_row(self) -> Dict[str, str]:
        return {
            "StorageAccount": self.identity.name,
            "ResourceGroup": self.identity.resource_group,
            "Kind": self.kind,
            "AccessTier": self.access_tier,
            "Location": self.location,
            "CreationTime": format_datetime(self.creation_time),
            "SuspiciousActivity": self.suspicious_activity,
        }


@dataclass(frozen=True)
class ActivityEvent:
    """One activity log entry, or an event inferred from resource metadata"""
    event_time: datetime
    operation: str
    status: str
    caller: str
    resource_type: str
    resource_name: str
    resource_group: str
    subscription_id: str
    level: str = "Informational"
    inferred: bool = False

    CSV_HEADERS = (
        "EventTime", "Operation", "Status", "Caller", "ResourceType", "ResourceName",
        "ResourceGroup", "SubscriptionId", "Level", "Source",
    )

    @property
    def resource_key(self) -> Tuple[str, str, str]:
        return (self.resource_group.lower(), self.resource_name.lower(), self.resource_type.lower())

    def to_row(self) -> Dict[str, str]:
        return {
            "EventTime": format_datetime(self.event_time),
            "Operation": self.operation,
            "Status": self.status,
            "Caller": self.caller,
            "ResourceType": self.resource_type,
            "ResourceName": self.resource_name,
            "ResourceGroup": self.resource_group,
            "SubscriptionId": self.subscription_id,
            "Level": self.level,
            "Source": "Inferred" if self.inferred else "ActivityLog",
        }


@dataclass(frozen=True)
class CreatorSummary:
    creator: str
    total_actions: int
    creation_actions: int
    modification_actions: int
    deletion_actions: int
    resource_types: Tuple[str, ...]
    last_activity: Optional[datetime]

    CSV_HEADERS = (
        "Creator", "TotalActions", "CreationActions", "ModificationActions",
        "DeletionActions", "ResourceTypes", "LastActivity",
    )

    def to_row(self) -> Dict[str, str]:
        return {
            "Creator": self.creator,
            "TotalActions": str(self.total_actions),
            "CreationActions": str(self.creation_actions),
            "ModificationActions": str(self.modification_actions),
            "DeletionActions": str(self.deletion_actions),
            "ResourceTypes": ";".join(self.resource_types),
            "LastActivity": format_datetime(self.last_activity),
        }


@dataclass(frozen=True)
class ModificationHistory:
    resource_name: str
    resource_type: str
    modification_count: int
    last_modified: Optional[datetime]
    last_modifier: str
    operations: Tuple[str, ...]

    CSV_HEADERS = (
        "ResourceName", "ResourceType", "ModificationCount", "LastModified", "LastModifier", "Operations",
    )

    def to_row(self) -> Dict[str, str]:
        return {
            "ResourceName": self.resource_name,
            "ResourceType": self.resource_type,
            "ModificationCount": str(self.modification_count),
            "LastModified": format_datetime(self.last_modified),
            "LastModifier": self.last_modifier,
            "Operations": ";".join(self.operations),
        }


@dataclass(frozen=True)
class DeletionRecord:
    deletion_time: datetime
    resource_name: str
    resource_type: str
    deleted_by: str
    resource_group: str
    operation: str

    CSV_HEADERS = ("DeletionTime", "ResourceName", "ResourceType", "DeletedBy", "ResourceGroup", "Operation")

    def to_row(self) -> Dict[str, str]:
        return {
            "DeletionTime": format_datetime(self.deletion_time),
            "ResourceName": self.resource_name,
            "ResourceType": self.resource_type,
            "DeletedBy": self.deleted_by,
            "ResourceGroup": self.resource_group,
            "Operation": self.operation,
        }


@dataclass(frozen=True)
class ResourceOwnership:
    """Who created a resource and which governance tags it carries"""
    identity: ResourceIdentity
    created_by: str = "Unknown"
    created_by_source: str = "Unknown"  # Tag, ActivityLog, Unknown
    environment: str = ""
    project: str = ""
    cost_center: str = ""
    age_category: str = "Unknown"

    CSV_HEADERS = (
        "SubscriptionId", "ResourceGroup", "Name", "Type", "CreatedBy", "CreatedBySource",
        "Environment", "Project", "CostCenter", "AgeCategory",
    )

    def to_row(self) -> Dict[str, str]:
        return {
            "SubscriptionId": self.identity.subscription_id,
            "ResourceGroup": self.identity.resource_group,
            "Name": self.identity.name,
            "Type": self.identity.resource_type,
            "CreatedBy": self.created_by,
            "CreatedBySource": self.created_by_source,
            "Environment": self.environment,
            "Project": self.project,
            "CostCenter": self.cost_center,
            "AgeCategory": self.age_category,
        }

    @classmethod
    def from_row(cls, row: Dict[str, str]) -> "ResourceOwnership":
        return cls(
            identity=ResourceIdentity(
                subscription_id=row.get("SubscriptionId", ""),
                resource_group=row.get("ResourceGroup", ""),
                name=row.get("Name", ""),
                resource_type=row.get("Type", ""),
            ),
            created_by=row.get("CreatedBy") or "Unknown",
            created_by_source=row.get("CreatedBySource") or "Unknown",
            environment=row.get("Environment", ""),
            project=row.get("Project", ""),
            cost_center=row.get("CostCenter", ""),
            age_category=row.get("AgeCategory") or "Unknown",
        )


_SAVINGS_PATTERN = re.compile(r"^\$?([\d.]+)(?:\s*-\s*\$?([\d.]+))?")


def _format_amount(amount: Decimal) -> str:
    if amount == amount.to_integral_value():
        return str(int(amount))
    return f"{amount:.2f}"


@dataclass(frozen=True)
class SavingsRange:
    """Coarse monthly savings bracket; ordered by its upper bound"""
    low: Decimal
    high: Decimal

    @classmethod
    def of(cls, low: Any, high: Any = None) -> "SavingsRange":
        low_value = to_decimal(low)
        high_value = to_decimal(high) if high is not None else low_value
        return cls(low=low_value, high=high_value)

    @classmethod
    def parse(cls, text: str) -> "SavingsRange":
        """Parse "$100-500/month", "100-500" or "$150.00/month" """
        match = _SAVINGS_PATTERN.match((text or "").strip())
        if not match:
            return cls.of(0)
        return cls.of(match.group(1), match.group(2))

    @property
    def sort_key(self) -> Decimal:
        return self.high

    def __str__(self) -> str:
        if self.low == self.high:
            return f"${_format_amount(self.high)}/month"
        return f"${_format_amount(self.low)}-{_format_amount(self.high)}/month"


@dataclass(frozen=True)
class Recommendation:
    """Advisory cleanup recommendation; never acted on automatically"""
    priority: int
    identity: ResourceIdentity
    recommendation_type: RecommendationType
    category: str
    estimated_savings: SavingsRange
    risk_level: RiskLevel
    action: str
    location: str = ""
    safety_checks: Tuple[str, ...] = ()
    tags: Dict[str, str] = field(default_factory=dict)
    verified: bool = True

    CSV_HEADERS = (
        "Priority", "ResourceName", "ResourceType", "ResourceGroup", "Location", "RecommendationType",
        "Category", "EstimatedSavings", "RiskLevel", "SafetyChecks", "CleanupAction", "Verified", "Tags",
    )

    @property
    def dedup_key(self) -> Tuple[Tuple[str, str, str, str], str]:
        return (self.identity.key, self.category.lower())

    def to_row(self) -> Dict[str, str]:
        return {
            "Priority": str(self.priority),
            "ResourceName": self.identity.name,
            "ResourceType": self.identity.resource_type,
            "ResourceGroup": self.identity.resource_group,
            "Location": self.location,
            "RecommendationType": self.recommendation_type.value,
            "Category": self.category,
            "EstimatedSavings": str(self.estimated_savings),
            "RiskLevel": self.risk_level.value,
            "SafetyChecks": ";".join(self.safety_checks),
            "CleanupAction": self.action,
            "Verified": "Yes" if self.verified else "Unverified",
            "Tags": format_tags(self.tags),
        }


@dataclass
class ReportFile:
    """A report written to disk and the number of data rows in it"""
    path: str
    record_count: int
    view: str = ""


@dataclass
class ModuleResult:
    """Outcome of one pipeline stage"""
    name: str
    state: ModuleState = ModuleState.SUCCEEDED
    records: Dict[str, List[Any]] = field(default_factory=dict)
    files: List[ReportFile] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None
    duration_seconds: float = 0.0

    def degrade(self, warning: str) -> None:
        self.warnings.append(warning)
        if self.state == ModuleState.SUCCEEDED:
            self.state = ModuleState.DEGRADED


@dataclass
class AuditSummary:
    """Results of a complete audit run"""
    run_id: str
    report_date: str
    subscription_id: str
    subscription_name: str = ""
    resource_groups: List[str] = field(default_factory=list)
    started_at: Optional[datetime] = None
    duration_seconds: float = 0.0
    dry_run: bool = False
    stages: List[ModuleResult] = field(default_factory=list)
    summary_file: Optional[str] = None

    @property
    def files(self) -> List[ReportFile]:
        return [report for stage in self.stages for report in stage.files]

    @property
    def failed_stages(self) -> List[ModuleResult]:
        return [stage for stage in self.stages if stage.state == ModuleState.FAILED]

    @property
    def exit_code(self) -> int:
        return 1 if self.failed_stages else 0

    def stage(self, name: str) -> Optional[ModuleResult]:
        for stage in self.stages:
            if stage.name == name:
                return stage
        return None
