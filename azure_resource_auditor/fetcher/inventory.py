"""Resource inventory collection through Azure Resource Graph"""

from typing import Any, Dict, Iterable, List, Optional, Sequence

from azure.mgmt.resourcegraph.models import QueryRequest, QueryRequestOptions

from ..core.exceptions import InventoryFetchError
from ..core.models import ResourceIdentity, ResourceKind, ResourceRecord, parse_datetime
from ..utils.logger import setup_logger
from ..utils.retry import RetryPolicy

PAGE_SIZE = 1000


def _kql_list(values: Iterable[str]) -> str:
    return ", ".join(f"'{value}'" for value in values)


def build_inventory_query(
    subscription_id: str,
    resource_groups: Sequence[str] = (),
    excluded_types: Sequence[str] = (),
) -> str:
    """Resource Graph query for every resource in scope"""
    clauses = ["Resources", f"| where subscriptionId =~ '{subscription_id}'"]
    if resource_groups:
        clauses.append(f"| where resourceGroup in~ ({_kql_list(resource_groups)})")
    if excluded_types:
        clauses.append(f"| where type !in~ ({_kql_list(excluded_types)})")
    clauses.append("| project id, subscriptionId, resourceGroup, name, type, location, tags, sku, properties")
    clauses.append("| order by resourceGroup asc, name asc")
    return "\n".join(clauses)


def _power_state(properties: Dict[str, Any]) -> str:
    code = (
        properties.get('extended', {})
        .get('instanceView', {})
        .get('powerState', {})
        .get('code', '')
    )
    if not code:
        return ""
    return f"VM {code.split('/')[-1]}"


def _size(kind: ResourceKind, properties: Dict[str, Any]) -> str:
    if kind == ResourceKind.VIRTUAL_MACHINE:
        return properties.get('hardwareProfile', {}).get('vmSize', '') or ''
    if kind in (ResourceKind.DISK, ResourceKind.SNAPSHOT):
        size_gb = properties.get('diskSizeGB')
        return f"{size_gb} GB" if size_gb is not None else ""
    if kind == ResourceKind.STORAGE_ACCOUNT:
        return "Storage Account"
    return ""


def to_resource_record(row: Dict[str, Any], subscription_name: str = "") -> ResourceRecord:
    """Normalize one Resource Graph row"""
    properties = row.get('properties') or {}
    sku = row.get('sku') or {}
    kind = ResourceKind.from_type(row.get('type'))
    created = properties.get('timeCreated') or properties.get('creationDate')

    return ResourceRecord(
        identity=ResourceIdentity(
            subscription_id=row.get('subscriptionId', ''),
            resource_group=row.get('resourceGroup', ''),
            name=row.get('name', ''),
            resource_type=row.get('type', ''),
        ),
        location=row.get('location', '') or '',
        subscription_name=subscription_name,
        power_state=_power_state(properties) if kind == ResourceKind.VIRTUAL_MACHINE else "",
        provisioning_state=properties.get('provisioningState', '') or '',
        creation_time=parse_datetime(created) if isinstance(created, str) else created,
        sku_name=(sku.get('name', '') if isinstance(sku, dict) else '') or '',
        size=_size(kind, properties),
        tags=dict(row.get('tags') or {}),
    )


class ResourceFetcher:
    """Collect the complete resource inventory for a subscription"""

    def __init__(
        self,
        graph_client: Any,
        retry_policy: Optional[RetryPolicy] = None,
        excluded_resource_types: Sequence[str] = (),
    ):
        self.logger = setup_logger(self.__class__.__name__)
        self.graph_client = graph_client
        self.retry_policy = retry_policy or RetryPolicy()
        self.excluded_resource_types = tuple(excluded_resource_types)

    def fetch(
        self,
        subscription_id: str,
        resource_groups: Sequence[str] = (),
        subscription_name: str = "",
    ) -> List[ResourceRecord]:
        """Return every resource in scope; raises InventoryFetchError on any API failure"""

        query = build_inventory_query(subscription_id, resource_groups, self.excluded_resource_types)
        self.logger.debug(f"Executing inventory query: {query}")

        try:
            rows = self._query_all(subscription_id, query)
        except Exception as e:
            self.logger.error(f"Inventory query failed for subscription {subscription_id}: {e}")
            raise InventoryFetchError(f"Failed to collect inventory for subscription {subscription_id}: {e}")

        wanted_groups = {rg.lower() for rg in resource_groups}
        excluded = {t.lower() for t in self.excluded_resource_types}
        records = []
        for row in rows:
            record = to_resource_record(row, subscription_name)
            if wanted_groups and record.resource_group.lower() not in wanted_groups:
                continue
            if record.identity.resource_type.lower() in excluded:
                continue
            records.append(record)

        records.sort(key=lambda r: (r.resource_group.lower(), r.name.lower()))
        self.logger.info(f"Collected {len(records)} resources from subscription {subscription_id}")
        return records

    def _query_all(self, subscription_id: str, query: str) -> List[Dict[str, Any]]:
        """Follow skip tokens until the result set is exhausted"""
        rows: List[Dict[str, Any]] = []
        skip_token = None

        while True:
            request = QueryRequest(
                subscriptions=[subscription_id],
                query=query,
                options=QueryRequestOptions(skip_token=skip_token, top=PAGE_SIZE, result_format="objectArray"),
            )
            response = self.retry_policy.call(self.graph_client.resources, request)
            rows.extend(response.data or [])
            skip_token = getattr(response, 'skip_token', None)
            if not skip_token:
                break

        return rows
