"""Orphaned and idle resource detection"""

from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set

from ..core.interfaces import AuditContext, IAuditModule
from ..core.models import (
    CostImpact,
    ModuleResult,
    OrphanCategory,
    OrphanFinding,
    ResourceIdentity,
    ResourceKind,
    ResourceRecord,
    StorageAccountReview,
    utc_now,
)
from ..core.policy import AuditPolicy
from ..reporting.summary import generated_stamp, render_orphan_summary
from ..utils.logger import setup_logger


def _sku(resource: Any, attribute: str = 'name') -> str:
    sku = getattr(resource, 'sku', None)
    return str(getattr(sku, attribute, None) or '') if sku else ''


def _finding(
    resource: Any,
    kind: ResourceKind,
    category: OrphanCategory,
    impact: CostImpact,
    details: str,
) -> OrphanFinding:
    return OrphanFinding(
        identity=ResourceIdentity.from_resource_id(resource.id, kind.value),
        category=category,
        cost_impact=impact,
        location=resource.location or '',
        details=details,
        tags=dict(resource.tags or {}),
    )


def detect_unattached_disks(disks: Iterable[Any], policy: AuditPolicy) -> List[OrphanFinding]:
    findings = []
    for disk in disks:
        if disk.managed_by or getattr(disk, 'managed_by_extended', None):
            continue
        findings.append(_finding(
            disk, ResourceKind.DISK, OrphanCategory.UNATTACHED_DISK,
            policy.disk_impact(disk.disk_size_gb),
            f"Size: {disk.disk_size_gb}GB, SKU: {_sku(disk)}",
        ))
    return findings


def detect_unassociated_public_ips(public_ips: Iterable[Any], policy: AuditPolicy) -> List[OrphanFinding]:
    findings = []
    for ip in public_ips:
        if ip.ip_configuration or getattr(ip, 'nat_gateway', None):
            continue
        findings.append(_finding(
            ip, ResourceKind.PUBLIC_IP, OrphanCategory.UNASSOCIATED_PUBLIC_IP,
            policy.public_ip_impact(_sku(ip)),
            f"SKU: {_sku(ip)}, Tier: {_sku(ip, 'tier')}",
        ))
    return findings


def detect_unused_nsgs(groups: Iterable[Any]) -> List[OrphanFinding]:
    return [
        _finding(nsg, ResourceKind.NETWORK_SECURITY_GROUP, OrphanCategory.UNUSED_NSG,
                 CostImpact.LOW, "No associated NICs or subnets")
        for nsg in groups
        if not nsg.network_interfaces and not nsg.subnets
    ]


def detect_orphaned_nics(interfaces: Iterable[Any]) -> List[OrphanFinding]:
    return [
        _finding(nic, ResourceKind.NETWORK_INTERFACE, OrphanCategory.ORPHANED_NIC,
                 CostImpact.LOW, "Not attached to VM")
        for nic in interfaces
        if not nic.virtual_machine and not getattr(nic, 'private_endpoint', None)
    ]


def _backend_member_count(load_balancer: Any) -> int:
    count = 0
    for pool in load_balancer.backend_address_pools or []:
        count += len(getattr(pool, 'backend_ip_configurations', None) or [])
        count += len(getattr(pool, 'load_balancer_backend_addresses', None) or [])
    return count


def detect_unused_load_balancers(load_balancers: Iterable[Any], policy: AuditPolicy) -> List[OrphanFinding]:
    return [
        _finding(lb, ResourceKind.LOAD_BALANCER, OrphanCategory.UNUSED_LOAD_BALANCER,
                 policy.load_balancer_impact, f"SKU: {_sku(lb)}, No backend pools")
        for lb in load_balancers
        if _backend_member_count(lb) == 0
    ]


def detect_empty_resource_groups(
    subscription_id: str,
    resource_groups: Iterable[Any],
    has_resources: Callable[[str], bool],
) -> List[OrphanFinding]:
    """Groups with zero resources; reported for information only"""
    findings = []
    for group in resource_groups:
        if has_resources(group.name):
            continue
        findings.append(OrphanFinding(
            identity=ResourceIdentity(
                subscription_id=subscription_id,
                resource_group=group.name,
                name=group.name,
                resource_type=ResourceKind.RESOURCE_GROUP.value,
            ),
            category=OrphanCategory.EMPTY_RESOURCE_GROUP,
            cost_impact=CostImpact.LOW,
            location=group.location or '',
            details="Resource group contains no resources",
            tags=dict(group.tags or {}),
        ))
    return findings


def detect_stopped_vms(inventory: Iterable[ResourceRecord], policy: AuditPolicy) -> List[OrphanFinding]:
    return [
        OrphanFinding(
            identity=record.identity,
            category=OrphanCategory.STOPPED_VM,
            cost_impact=policy.vm_impact(record.size),
            location=record.location,
            details=f"VM Size: {record.size}, Power: {record.power_state}",
            tags=dict(record.tags),
        )
        for record in inventory
        if record.is_stopped
    ]


def detect_orphaned_snapshots(
    snapshots: Iterable[Any],
    existing_ids: Set[str],
    policy: AuditPolicy,
    now: Optional[datetime] = None,
) -> List[OrphanFinding]:
    """Snapshots whose source disk or VM no longer exists

    ``existing_ids`` holds lower-cased ARM ids of every disk and VM in scope.
    """
    now = now or utc_now()
    findings = []
    for snapshot in snapshots:
        creation_data = getattr(snapshot, 'creation_data', None)
        source_id = (getattr(creation_data, 'source_resource_id', None) or '').lower()
        if source_id and source_id in existing_ids:
            continue
        age = (now - snapshot.time_created).days if snapshot.time_created else "Unknown"
        findings.append(_finding(
            snapshot, ResourceKind.SNAPSHOT, OrphanCategory.ORPHANED_SNAPSHOT,
            policy.snapshot_impact(snapshot.disk_size_gb),
            f"Size: {snapshot.disk_size_gb}GB, Age: {age} days",
        ))
    return findings


def _text(value: Any) -> str:
    """SDK enums compare equal to their value but print as Kind.X"""
    return str(getattr(value, 'value', value) or '')


def review_storage_accounts(accounts: Iterable[Any]) -> List[StorageAccountReview]:
    """Every storage account, with archive or tierless blob accounts flagged"""
    reviews = []
    for account in accounts:
        kind = _text(account.kind)
        tier = _text(getattr(account, 'access_tier', None))
        if tier == "Archive":
            note = "Archive tier - rarely accessed"
        elif kind == "BlobStorage" and not tier:
            note = "No access tier set"
        else:
            note = "Normal"
        reviews.append(StorageAccountReview(
            identity=ResourceIdentity.from_resource_id(account.id, ResourceKind.STORAGE_ACCOUNT.value),
            kind=kind,
            access_tier=tier,
            location=account.location or '',
            creation_time=getattr(account, 'creation_time', None),
            suspicious_activity=note,
        ))
    return reviews


def sort_findings(findings: Iterable[OrphanFinding]) -> List[OrphanFinding]:
    """High impact first, then category, then name"""
    return sorted(
        findings,
        key=lambda f: (-f.cost_impact.rank, f.category.value, f.identity.name.lower()),
    )


class OrphanDetector(IAuditModule):
    """Run every orphan detector independently against one subscription"""

    def __init__(self):
        self.logger = setup_logger(self.__class__.__name__)

    def get_module_name(self) -> str:
        return "orphans"

    def run(self, context: AuditContext) -> ModuleResult:
        result = ModuleResult(name=self.get_module_name())
        policy = context.config.policy
        clients = context.clients
        subscription_id = context.subscription_id

        detectors: Dict[OrphanCategory, Callable[[], List[OrphanFinding]]] = {
            OrphanCategory.UNATTACHED_DISK: lambda: detect_unattached_disks(
                self._list(context, clients['compute'].disks.list), policy),
            OrphanCategory.UNASSOCIATED_PUBLIC_IP: lambda: detect_unassociated_public_ips(
                self._list(context, clients['network'].public_ip_addresses.list_all), policy),
            OrphanCategory.UNUSED_NSG: lambda: detect_unused_nsgs(
                self._list(context, clients['network'].network_security_groups.list_all)),
            OrphanCategory.ORPHANED_NIC: lambda: detect_orphaned_nics(
                self._list(context, clients['network'].network_interfaces.list_all)),
            OrphanCategory.UNUSED_LOAD_BALANCER: lambda: detect_unused_load_balancers(
                self._list(context, clients['network'].load_balancers.list_all), policy),
            OrphanCategory.EMPTY_RESOURCE_GROUP: lambda: self._empty_resource_groups(context),
            OrphanCategory.STOPPED_VM: lambda: detect_stopped_vms(context.inventory, policy),
            OrphanCategory.ORPHANED_SNAPSHOT: lambda: self._orphaned_snapshots(context, policy),
        }

        findings: List[OrphanFinding] = []
        for category, detect in detectors.items():
            try:
                found = self._in_scope(detect(), context.config.resource_groups)
                self.logger.info(f"{category.value}: {len(found)} found")
                findings.extend(found)
            except Exception as e:
                self.logger.warning(f"{category.value} detection failed in subscription {subscription_id}: {e}")
                result.degrade(f"{category.value} detection failed: {e}")

        findings = sort_findings(findings)
        stopped = [f for f in findings if f.category == OrphanCategory.STOPPED_VM]
        empty_groups = [f for f in findings if f.category == OrphanCategory.EMPTY_RESOURCE_GROUP]
        storage = self._storage_reviews(context, result)

        writer = context.writer
        result.files.append(writer.write_records("orphans", OrphanFinding, findings))
        result.files.append(writer.write_records("orphans", OrphanFinding, stopped, side="stopped-vms"))
        result.files.append(writer.write_records("orphans", OrphanFinding, empty_groups, side="empty-rgs"))
        result.files.append(writer.write_records("orphans", StorageAccountReview, storage, side="unused-storage"))
        result.records = {'orphans': findings, 'storage': storage}

        summary = render_orphan_summary(
            findings,
            context.subscription_name or subscription_id,
            storage_reviews=storage,
            warnings=result.warnings,
            generated=generated_stamp(context.clock()),
        )
        summary_path = writer.path_for("orphans", "summary", ".txt")
        result.files.append(writer.write_text(summary_path, summary, view="orphans-summary"))

        flagged = sum(1 for review in storage if review.is_suspicious)
        self.logger.info(
            f"Orphan detection complete: {len(findings)} findings, {flagged} of {len(storage)} storage accounts flagged"
        )
        return result

    def _storage_reviews(self, context: AuditContext, result: ModuleResult) -> List[StorageAccountReview]:
        """Informational; never feeds cleanup recommendations"""
        try:
            accounts = self._list(context, context.clients['storage'].storage_accounts.list)
        except Exception as e:
            self.logger.warning(f"Storage account review failed in subscription {context.subscription_id}: {e}")
            result.degrade(f"Storage account review failed: {e}")
            return []
        reviews = review_storage_accounts(accounts)
        return self._in_scope(reviews, context.config.resource_groups)

    def _list(self, context: AuditContext, operation: Callable[[], Iterable[Any]]) -> List[Any]:
        return context.retry_policy.call(lambda: list(operation()))

    def _in_scope(self, findings: List[Any], resource_groups: Sequence[str]) -> List[Any]:
        if not resource_groups:
            return findings
        wanted = {rg.lower() for rg in resource_groups}
        return [f for f in findings if f.identity.resource_group.lower() in wanted]

    def _empty_resource_groups(self, context: AuditContext) -> List[OrphanFinding]:
        resource_client = context.clients['resource']
        groups = self._list(context, resource_client.resource_groups.list)
        wanted = {rg.lower() for rg in context.config.resource_groups}
        if wanted:
            groups = [group for group in groups if group.name.lower() in wanted]

        def has_resources(name: str) -> bool:
            first = context.retry_policy.call(
                lambda: next(iter(resource_client.resources.list_by_resource_group(name, top=1)), None)
            )
            return first is not None

        return detect_empty_resource_groups(context.subscription_id, groups, has_resources)

    def _orphaned_snapshots(self, context: AuditContext, policy: AuditPolicy) -> List[OrphanFinding]:
        compute_client = context.clients['compute']
        disks = self._list(context, compute_client.disks.list)
        snapshots = self._list(context, compute_client.snapshots.list)

        existing = {disk.id.lower() for disk in disks if disk.id}
        existing.update(
            record.identity.resource_id.lower()
            for record in context.inventory
            if record.kind in (ResourceKind.DISK, ResourceKind.VIRTUAL_MACHINE)
        )
        return detect_orphaned_snapshots(snapshots, existing, policy, context.clock())
