"""
Tests for Resource Graph inventory collection.

Test Coverage:
    - KQL query construction with scope and exclusions
    - Row normalization for VMs, disks and storage accounts
    - Skip-token paging
    - Resource group filter and ordering
    - Failure wrapping
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from azure_resource_auditor.core.exceptions import InventoryFetchError
from azure_resource_auditor.core.models import ResourceKind
from azure_resource_auditor.fetcher.inventory import ResourceFetcher, build_inventory_query, to_resource_record
from azure_resource_auditor.utils.retry import RetryPolicy

from conftest import SUBSCRIPTION_ID


def graph_row(name, resource_type, resource_group="rg-app", **extra):
    row = {
        'id': f"/subscriptions/{SUBSCRIPTION_ID}/resourceGroups/{resource_group}/providers/{resource_type}/{name}",
        'subscriptionId': SUBSCRIPTION_ID,
        'resourceGroup': resource_group,
        'name': name,
        'type': resource_type,
        'location': 'eastus',
        'tags': {},
        'sku': None,
        'properties': {},
    }
    row.update(extra)
    return row


def graph_response(rows, skip_token=None):
    return SimpleNamespace(data=rows, skip_token=skip_token)


class TestInventoryQuery:
    """Tests for build_inventory_query."""

    def test_subscription_only(self):
        """Without filters every resource in the subscription is queried."""
        query = build_inventory_query(SUBSCRIPTION_ID)

        assert query.startswith("Resources")
        assert f"subscriptionId =~ '{SUBSCRIPTION_ID}'" in query
        assert "resourceGroup in~" not in query
        assert "order by resourceGroup asc, name asc" in query

    def test_groups_and_exclusions(self):
        """Resource groups and excluded types become KQL filters."""
        query = build_inventory_query(SUBSCRIPTION_ID, ["rg-a", "rg-b"], ["Microsoft.Insights/components"])

        assert "resourceGroup in~ ('rg-a', 'rg-b')" in query
        assert "type !in~ ('Microsoft.Insights/components')" in query


class TestRowNormalization:
    """Tests for to_resource_record."""

    def test_virtual_machine(self):
        """VM rows carry size, power state and creation time."""
        row = graph_row(
            "vm01", "Microsoft.Compute/virtualMachines",
            tags={"Owner": "alice"},
            properties={
                'hardwareProfile': {'vmSize': 'Standard_D2s_v3'},
                'provisioningState': 'Succeeded',
                'timeCreated': '2023-01-05T10:00:00Z',
                'extended': {'instanceView': {'powerState': {'code': 'PowerState/deallocated'}}},
            },
        )

        record = to_resource_record(row, "Production")

        assert record.kind == ResourceKind.VIRTUAL_MACHINE
        assert record.size == "Standard_D2s_v3"
        assert record.power_state == "VM deallocated"
        assert record.is_stopped
        assert record.creation_time.year == 2023
        assert record.subscription_name == "Production"
        assert record.tags == {"Owner": "alice"}

    def test_disk(self):
        """Disk rows report size in GB and their SKU."""
        row = graph_row(
            "data-disk", "Microsoft.Compute/disks",
            sku={'name': 'Premium_LRS', 'tier': 'Premium'},
            properties={'diskSizeGB': 600},
        )

        record = to_resource_record(row)

        assert record.size == "600 GB"
        assert record.sku_name == "Premium_LRS"
        assert record.power_state == ""

    def test_missing_fields(self):
        """Sparse rows normalize to blanks instead of failing."""
        record = to_resource_record({'name': 'thing', 'type': 'Microsoft.Web/sites', 'tags': None})

        assert record.kind == ResourceKind.UNKNOWN
        assert record.location == ""
        assert record.tags == {}
        assert record.creation_time is None


class TestResourceFetcher:
    """Tests for ResourceFetcher.fetch."""

    def test_follows_skip_tokens(self):
        """Every page is collected until no skip token remains."""
        client = MagicMock()
        client.resources.side_effect = [
            graph_response([graph_row("b-vm", "Microsoft.Compute/virtualMachines")], skip_token="page-2"),
            graph_response([graph_row("a-disk", "Microsoft.Compute/disks")]),
        ]

        records = ResourceFetcher(client, RetryPolicy(1, 0)).fetch(SUBSCRIPTION_ID)

        assert client.resources.call_count == 2
        second_request = client.resources.call_args_list[1].args[0]
        assert second_request.options.skip_token == "page-2"
        assert [r.name for r in records] == ["a-disk", "b-vm"]

    def test_resource_group_filter_is_subset(self):
        """Only resources from the requested groups are returned."""
        client = MagicMock()
        client.resources.return_value = graph_response([
            graph_row("vm01", "Microsoft.Compute/virtualMachines", "RG-App"),
            graph_row("vm02", "Microsoft.Compute/virtualMachines", "rg-other"),
        ])

        scoped = ResourceFetcher(client, RetryPolicy(1, 0)).fetch(SUBSCRIPTION_ID, ["rg-app"])

        assert [r.name for r in scoped] == ["vm01"]
        assert all(r.resource_group.lower() == "rg-app" for r in scoped)

    def test_excluded_types_dropped(self):
        """Excluded types never reach the inventory."""
        client = MagicMock()
        client.resources.return_value = graph_response([
            graph_row("appi", "Microsoft.Insights/components"),
            graph_row("vm01", "Microsoft.Compute/virtualMachines"),
        ])

        records = ResourceFetcher(client, RetryPolicy(1, 0), ["microsoft.insights/components"]).fetch(SUBSCRIPTION_ID)

        assert [r.name for r in records] == ["vm01"]

    def test_failure_raises_inventory_error(self):
        """API failures surface as InventoryFetchError."""
        client = MagicMock()
        client.resources.side_effect = RuntimeError("graph unavailable")

        with pytest.raises(InventoryFetchError, match="graph unavailable"):
            ResourceFetcher(client, RetryPolicy(1, 0)).fetch(SUBSCRIPTION_ID)

    def test_empty_subscription(self):
        """An empty subscription yields an empty inventory."""
        client = MagicMock()
        client.resources.return_value = graph_response([])

        assert ResourceFetcher(client, RetryPolicy(1, 0)).fetch(SUBSCRIPTION_ID) == []
