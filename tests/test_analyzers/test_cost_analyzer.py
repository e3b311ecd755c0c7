"""
Tests for the cost analysis module.

Test Coverage:
    - Query definition for named and custom periods
    - Column resolution, resource group filtering and credit clamping
    - Per-resource aggregation
    - Following next_link pages of the cost query
    - Thirty-day cost trends by resource type
    - Threshold and power-state recommendations
    - Fallback estimates when the Cost Management API fails
"""

from dataclasses import replace
from datetime import date
from decimal import Decimal
from pathlib import Path
from types import SimpleNamespace

import pytest
from azure.core.exceptions import HttpResponseError

from azure_resource_auditor.analyzers.cost_analyzer import (
    CostAnalyzer,
    aggregate_costs,
    build_query_definition,
    build_trend_query,
    skip_token,
)
from azure_resource_auditor.core.models import (
    LOW_CONFIDENCE_MARKER,
    CostRecord,
    CostTimePeriod,
    ModuleState,
)
from azure_resource_auditor.reporting.writers import read_rows

from conftest import NOW, arm_id, make_record

VM_ID = arm_id("rg-app", "Microsoft.Compute/virtualMachines", "vm01")
DISK_ID = arm_id("rg-app", "Microsoft.Compute/disks", "disk01")
OTHER_ID = arm_id("rg-other", "Microsoft.Storage/storageAccounts", "stother")

COLUMNS = ["PreTaxCost", "UsageDate", "ResourceId", "ResourceType", "ResourceLocation", "ChargeType", "Currency"]


def cost_response(rows, columns=COLUMNS, next_link=None):
    return SimpleNamespace(columns=[SimpleNamespace(name=c) for c in columns], rows=rows, next_link=next_link)


def cost_row(cost, resource_id, usage_date=20240105, resource_type="microsoft.compute/virtualmachines"):
    return [cost, usage_date, resource_id, resource_type, "eastus", "Usage", "USD"]


class TestQueryDefinition:
    """Tests for build_query_definition."""

    def test_named_period(self):
        """Named periods use the timeframe directly."""
        query = build_query_definition(CostTimePeriod.MONTH_TO_DATE)

        assert query.type == "ActualCost"
        assert query.timeframe == "MonthToDate"
        assert query.time_period is None
        assert query.dataset.granularity == "Daily"
        assert [g.name for g in query.dataset.grouping] == [
            "ResourceId", "ResourceType", "ResourceLocation", "ChargeType"
        ]

    def test_custom_period(self):
        """Custom periods carry explicit start and end dates."""
        query = build_query_definition(CostTimePeriod.CUSTOM, "2024-01-01", "2024-01-31")

        assert query.timeframe == "Custom"
        assert query.time_period.from_property.date() == date(2024, 1, 1)
        assert query.time_period.to.date() == date(2024, 1, 31)

    def test_trend_query(self):
        """Trends cover the thirty days before today, grouped by resource type."""
        query = build_trend_query(NOW)

        assert query.timeframe == "Custom"
        assert query.time_period.from_property.date() == date(2023, 12, 16)
        assert query.time_period.to.date() == date(2024, 1, 15)
        assert [g.name for g in query.dataset.grouping] == ["ResourceType"]

    def test_skip_token(self):
        """The skip token is read from the next_link query string."""
        link = "https://management.azure.com/subscriptions/x/query?api-version=2023-03-01&$skiptoken=AbC%3D%3D"
        assert skip_token(link) == "AbC=="
        assert skip_token("https://management.azure.com/query?api-version=2023-03-01") is None
        assert skip_token(None) is None


class TestParseRows:
    """Tests for CostAnalyzer.parse_rows."""

    def test_parses_rows(self):
        """Columns are resolved by name, not position."""
        columns = ["ResourceId", "Currency", "PreTaxCost", "UsageDate"]
        response = cost_response([[VM_ID, "USD", 12.5, "2024-01-05T00:00:00"]], columns)

        records = CostAnalyzer().parse_rows(response)

        assert len(records) == 1
        assert records[0].cost == Decimal("12.5")
        assert records[0].usage_date == date(2024, 1, 5)
        assert records[0].resource_type == ""

    def test_clamps_negative_costs(self):
        """Credits and refunds are clamped to zero."""
        records = CostAnalyzer().parse_rows(cost_response([cost_row(-4.2, VM_ID)]))
        assert records[0].cost == Decimal("0")

    def test_resource_group_filter(self):
        """Rows outside the requested groups are dropped."""
        response = cost_response([cost_row(10, VM_ID), cost_row(20, OTHER_ID)])

        records = CostAnalyzer().parse_rows(response, ["RG-APP"])

        assert [r.resource_id for r in records] == [VM_ID]

    def test_missing_cost_column(self):
        """A response without a cost column is rejected."""
        with pytest.raises(ValueError, match="Unexpected cost query columns"):
            CostAnalyzer().parse_rows(cost_response([], ["ResourceId", "UsageDate"]))


class TestAggregation:
    """Tests for aggregate_costs."""

    def test_totals_equal_record_sum(self):
        """Aggregated totals add up to the sum of the daily records."""
        records = [
            CostRecord(date(2024, 1, 1), VM_ID, "vm", "eastus", "Usage", Decimal("100.10")),
            CostRecord(date(2024, 1, 2), VM_ID.upper(), "vm", "eastus", "Usage", Decimal("50.05")),
            CostRecord(date(2024, 1, 1), DISK_ID, "disk", "eastus", "Usage", Decimal("300")),
        ]

        aggregates = aggregate_costs(records)

        assert len(aggregates) == 2
        assert sum(a.total_cost for a in aggregates) == sum(r.cost for r in records)
        assert aggregates[0].resource_id == DISK_ID
        assert aggregates[1].total_cost == Decimal("150.15")

    def test_empty(self):
        """No records means no aggregates."""
        assert aggregate_costs([]) == []


class TestCostAnalyzerRun:
    """Tests for CostAnalyzer.run."""

    def test_successful_query(self, make_context, clients):
        """Metered costs produce records, breakdown and recommendations."""
        clients['cost'].query.usage.return_value = cost_response([
            cost_row(600, VM_ID, 20240101),
            cost_row(300, VM_ID, 20240102),
            cost_row(150, DISK_ID, 20240101, "microsoft.compute/disks"),
            cost_row(20, arm_id("rg-app", "Microsoft.Network/publicIPAddresses", "ip01"), 20240101),
        ])
        inventory = [make_record("vm02", power_state="VM deallocated", size="Standard_B2ms")]
        context = make_context(inventory)

        result = CostAnalyzer().run(context)

        assert result.state == ModuleState.SUCCEEDED
        assert len(result.records['costs']) == 4
        assert len(result.records['breakdown']) == 3

        recommendations = {r.resource_name: r for r in result.records['recommendations']}
        assert recommendations["vm01"].impact == "High"
        assert recommendations["vm01"].potential_savings == "180.00"
        assert recommendations["disk01"].impact == "Medium"
        assert recommendations["disk01"].potential_savings == "15.00"
        assert "ip01" not in recommendations
        assert recommendations["vm02"].category == "Power State Analysis"
        assert recommendations["vm02"].potential_savings == "50-200"

        views = {Path(f.path).name for f in result.files}
        writer = context.writer
        assert writer.path_for("costs").name in views
        assert writer.path_for("costs", "breakdown").name in views
        assert writer.path_for("costs", "recommendations").name in views

        scope, query = clients['cost'].query.usage.call_args_list[0].args
        assert scope == f"/subscriptions/{context.subscription_id}"
        assert query.timeframe == "MonthToDate"

    def test_custom_period_from_config(self, make_context, clients, config):
        """Configured custom dates reach the query."""
        clients['cost'].query.usage.return_value = cost_response([])
        custom = replace(config, time_period="Custom", cost_start_date="2024-01-01", cost_end_date="2024-01-15")

        CostAnalyzer().run(make_context(config_override=custom))

        query = clients['cost'].query.usage.call_args_list[0].args[1]
        assert query.timeframe == "Custom"
        assert query.time_period.to.date() == date(2024, 1, 15)

    def test_fallback_on_api_failure(self, make_context, clients):
        """An API failure degrades the module to low-confidence estimates."""
        error = HttpResponseError(message="Forbidden")
        error.status_code = 403
        clients['cost'].query.usage.side_effect = error
        inventory = [
            make_record("vm01", size="Standard_D2s_v3"),
            make_record("stdata", resource_type="Microsoft.Storage/storageAccounts", sku_name="Standard_LRS"),
            make_record("disk01", resource_type="Microsoft.Compute/disks"),
        ]
        context = make_context(inventory)

        result = CostAnalyzer().run(context)

        assert result.state == ModuleState.DEGRADED
        assert "estimates used" in result.warnings[0]
        estimates = {e.resource_name: e for e in result.records['estimates']}
        assert set(estimates) == {"vm01", "stdata"}
        assert estimates["vm01"].estimated_monthly_cost == "100-300"
        assert estimates["stdata"].estimated_monthly_cost == "20-100"

        rows = read_rows(context.writer.path_for("costs"))
        assert all(row["Confidence"] == LOW_CONFIDENCE_MARKER for row in rows)
        assert not context.writer.path_for("costs", "breakdown").exists()
        assert 'breakdown' not in result.records

    def test_fallback_without_estimable_resources(self, make_context, clients):
        """An empty estimate set still writes one marked placeholder row."""
        clients['cost'].query.usage.side_effect = RuntimeError("timeout")
        context = make_context([])

        result = CostAnalyzer().run(context)

        assert result.state == ModuleState.DEGRADED
        rows = read_rows(context.writer.path_for("costs"))
        assert len(rows) == 1
        assert rows[0]["Confidence"] == LOW_CONFIDENCE_MARKER

    def test_follows_next_link_pages(self, make_context, clients):
        """Every page of the cost query contributes records."""
        next_link = "https://management.azure.com/subscriptions/x/query?api-version=2023-03-01&$skiptoken=page2"
        clients['cost'].query.usage.side_effect = [
            cost_response([cost_row(100, VM_ID, 20240101)], next_link=next_link),
            cost_response([cost_row(50, DISK_ID, 20240102, "microsoft.compute/disks")]),
            cost_response([]),
        ]

        result = CostAnalyzer().run(make_context())

        usage = clients['cost'].query.usage
        assert usage.call_count == 3
        assert usage.call_args_list[1].kwargs == {'params': {'$skiptoken': 'page2'}}
        assert usage.call_args_list[1].args == usage.call_args_list[0].args
        assert [r.resource_id for r in result.records['costs']] == [VM_ID, DISK_ID]
        assert sum(a.total_cost for a in result.records['breakdown']) == Decimal("150")

    def test_repeated_skip_token_stops_paging(self, make_context, clients):
        """A next_link that repeats its skip token does not loop forever."""
        next_link = "https://management.azure.com/query?$skiptoken=same"
        page = cost_response([cost_row(10, VM_ID)], next_link=next_link)
        clients['cost'].query.usage.side_effect = [page, page, cost_response([])]

        result = CostAnalyzer().run(make_context())

        assert len(result.records['costs']) == 2
        assert clients['cost'].query.usage.call_count == 3

    def test_trends_written(self, make_context, clients):
        """Daily cost per resource type is written to the trends report."""
        trend_columns = ["PreTaxCost", "UsageDate", "ResourceType", "Currency"]
        clients['cost'].query.usage.side_effect = [
            cost_response([cost_row(100, VM_ID, 20240101)]),
            cost_response([
                [30.5, 20240102, "microsoft.compute/disks", "USD"],
                [12.25, 20240101, "microsoft.compute/virtualmachines", "USD"],
            ], trend_columns),
        ]
        context = make_context()

        result = CostAnalyzer().run(context)

        assert result.state == ModuleState.SUCCEEDED
        rows = read_rows(context.writer.path_for("costs", "trends"))
        assert rows == [
            {"Date": "2024-01-01", "ResourceType": "microsoft.compute/virtualmachines", "DailyCost": "12.25"},
            {"Date": "2024-01-02", "ResourceType": "microsoft.compute/disks", "DailyCost": "30.5"},
        ]
        assert clients['cost'].query.usage.call_args_list[1].args[1].timeframe == "Custom"

    def test_trend_failure_keeps_costs(self, make_context, clients):
        """A failed trend query degrades the module but keeps metered costs."""
        clients['cost'].query.usage.side_effect = [
            cost_response([cost_row(100, VM_ID, 20240101)]),
            RuntimeError("throttled"),
        ]
        context = make_context()

        result = CostAnalyzer().run(context)

        assert result.state == ModuleState.DEGRADED
        assert any("Cost trend analysis unavailable" in w for w in result.warnings)
        assert len(result.records['costs']) == 1
        assert result.records['trends'] == []
        assert read_rows(context.writer.path_for("costs", "trends")) == []
