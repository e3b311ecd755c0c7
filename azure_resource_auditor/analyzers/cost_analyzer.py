"""Cost analysis using the Azure Cost Management query API"""

from collections import OrderedDict
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Set
from urllib.parse import parse_qs, urlparse

from azure.mgmt.costmanagement.models import (
    QueryAggregation,
    QueryDataset,
    QueryDefinition,
    QueryGrouping,
    QueryTimePeriod,
)

from ..core.configuration import AuditConfiguration
from ..core.interfaces import AuditContext, IAuditModule
from ..core.models import (
    LOW_CONFIDENCE_MARKER,
    CostAggregate,
    CostEstimate,
    CostRecommendation,
    CostRecord,
    CostTimePeriod,
    CostTrend,
    ModuleResult,
    ResourceIdentity,
    ResourceRecord,
    to_decimal,
)
from ..cost.calculator import FallbackCostCalculator
from ..utils.logger import setup_logger

GROUPING_DIMENSIONS = ("ResourceId", "ResourceType", "ResourceLocation", "ChargeType")
COST_COLUMNS = ("totalCost", "PreTaxCost", "Cost")
STOPPED_VM_SAVINGS = "50-200"
TREND_DAYS = 30


def build_query_definition(
    period: CostTimePeriod,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
) -> QueryDefinition:
    """Daily ActualCost query grouped by resource, type, location and charge type"""

    dataset = QueryDataset(
        granularity="Daily",
        aggregation={
            "totalCost": QueryAggregation(name="PreTaxCost", function="Sum")
        },
        grouping=[QueryGrouping(type="Dimension", name=name) for name in GROUPING_DIMENSIONS],
    )

    if period == CostTimePeriod.CUSTOM:
        return QueryDefinition(
            type="ActualCost",
            timeframe="Custom",
            time_period=QueryTimePeriod(
                from_property=datetime.combine(date.fromisoformat(start_date), time.min, tzinfo=timezone.utc),
                to=datetime.combine(date.fromisoformat(end_date), time.max, tzinfo=timezone.utc),
            ),
            dataset=dataset,
        )

    return QueryDefinition(type="ActualCost", timeframe=period.value, dataset=dataset)


def build_trend_query(now: datetime, days: int = TREND_DAYS) -> QueryDefinition:
    """Daily cost per resource type over the trailing window ending today"""
    today = now.date()
    return QueryDefinition(
        type="ActualCost",
        timeframe="Custom",
        time_period=QueryTimePeriod(
            from_property=datetime.combine(today - timedelta(days=days), time.min, tzinfo=timezone.utc),
            to=datetime.combine(today, time.max, tzinfo=timezone.utc),
        ),
        dataset=QueryDataset(
            granularity="Daily",
            aggregation={
                "totalCost": QueryAggregation(name="PreTaxCost", function="Sum")
            },
            grouping=[QueryGrouping(type="Dimension", name="ResourceType")],
        ),
    )


def skip_token(next_link: Optional[str]) -> Optional[str]:
    """Extract $skiptoken from a Cost Management next_link URL"""
    if not next_link:
        return None
    for key, values in parse_qs(urlparse(next_link).query).items():
        if key.lower() == "$skiptoken" and values:
            return values[0]
    return None


def _column_index(response: Any) -> Dict[str, int]:
    columns = [getattr(c, 'name', c) for c in (response.columns or [])]
    return {name: i for i, name in enumerate(columns)}


def _parse_usage_date(value: Any) -> date:
    """UsageDate comes back as 20240105 or an ISO string depending on the API version"""
    text = str(value).strip()
    if len(text) == 8 and text.isdigit():
        return datetime.strptime(text, "%Y%m%d").date()
    return datetime.fromisoformat(text[:10]).date()


def aggregate_costs(records: Iterable[CostRecord]) -> List[CostAggregate]:
    """Sum cost per resource id; result ordered by total cost, highest first"""
    totals: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
    for record in records:
        key = record.resource_id.lower()
        entry = totals.setdefault(key, {
            'resource_id': record.resource_id,
            'total_cost': Decimal("0"),
            'resource_type': record.resource_type,
            'location': record.location,
        })
        entry['total_cost'] += record.cost

    aggregates = [CostAggregate(**entry) for entry in totals.values()]
    aggregates.sort(key=lambda a: (-a.total_cost, a.resource_id.lower()))
    return aggregates


class CostAnalyzer(IAuditModule):
    """Collect metered costs, or size-based estimates when the API is unavailable"""

    def __init__(self):
        self.logger = setup_logger(self.__class__.__name__)

    def get_module_name(self) -> str:
        return "costs"

    def run(self, context: AuditContext) -> ModuleResult:
        config = context.config
        result = ModuleResult(name=self.get_module_name())

        try:
            records = self.query_costs(context)
        except Exception as e:
            self.logger.warning(f"Cost Management query failed, using estimated pricing: {e}")
            return self._run_fallback(context, result, str(e))

        aggregates = aggregate_costs(records)
        recommendations = self.build_recommendations(aggregates, context.inventory, config)
        trends = self._trends_or_warn(context, result)

        writer = context.writer
        result.files.append(writer.write_records("costs", CostRecord, records))
        result.files.append(writer.write_records("costs", CostAggregate, aggregates, side="breakdown"))
        result.files.append(writer.write_records("costs", CostRecommendation, recommendations, side="recommendations"))
        result.files.append(writer.write_records("costs", CostTrend, trends, side="trends"))
        result.records = {
            'costs': records,
            'breakdown': aggregates,
            'recommendations': recommendations,
            'trends': trends,
        }

        total = sum((a.total_cost for a in aggregates), Decimal("0"))
        self.logger.info(
            f"Cost analysis complete: {len(records)} cost records, {len(aggregates)} resources, total {total:.2f}"
        )
        return result

    def query_costs(self, context: AuditContext) -> List[CostRecord]:
        """Run the cost query across every result page and convert rows to records"""
        config = context.config
        query = build_query_definition(config.cost_period, config.cost_start_date, config.cost_end_date)
        today = context.clock().date()

        records: List[CostRecord] = []
        for page in self._usage_pages(context, query):
            records.extend(self.parse_rows(page, config.resource_groups, today))
        return records

    def query_trends(self, context: AuditContext) -> List[CostTrend]:
        """Daily cost per resource type for the last TREND_DAYS days"""
        query = build_trend_query(context.clock())
        trends: List[CostTrend] = []
        for page in self._usage_pages(context, query):
            trends.extend(self.parse_trend_rows(page))
        trends.sort(key=lambda t: (t.usage_date, t.resource_type.lower()))
        return trends

    def _trends_or_warn(self, context: AuditContext, result: ModuleResult) -> List[CostTrend]:
        try:
            return self.query_trends(context)
        except Exception as e:
            self.logger.warning(f"Unable to generate cost trend analysis: {e}")
            result.degrade(f"Cost trend analysis unavailable: {e}")
            return []

    def _usage_pages(self, context: AuditContext, query: QueryDefinition) -> Iterator[Any]:
        """Follow next_link skip tokens until the result set is exhausted"""
        scope = f"/subscriptions/{context.subscription_id}"
        cost_client = context.clients['cost']
        seen: Set[str] = set()

        response = context.retry_policy.call(cost_client.query.usage, scope, query)
        while True:
            yield response
            next_link = getattr(response, 'next_link', None)
            if not next_link:
                return
            token = skip_token(next_link)
            if not token or token in seen:
                self.logger.warning(f"Stopped cost query paging, no new skip token in next link: {next_link}")
                return
            seen.add(token)
            response = context.retry_policy.call(
                cost_client.query.usage, scope, query, params={"$skiptoken": token}
            )

    def parse_rows(
        self,
        response: Any,
        resource_groups: Sequence[str] = (),
        today: Optional[date] = None,
    ) -> List[CostRecord]:
        """Resolve columns by name; clamp provider credits to zero"""
        index = _column_index(response)

        cost_column = next((index[c] for c in COST_COLUMNS if c in index), None)
        if cost_column is None or 'ResourceId' not in index:
            raise ValueError(f"Unexpected cost query columns: {list(index)}")

        wanted_groups = {rg.lower() for rg in resource_groups}
        records = []
        clamped = 0

        for row in response.rows or []:
            resource_id = str(row[index['ResourceId']] or '')
            if wanted_groups:
                group = ResourceIdentity.from_resource_id(resource_id).resource_group.lower()
                if group not in wanted_groups:
                    continue

            cost = to_decimal(row[cost_column])
            if cost < 0:
                clamped += 1
                cost = Decimal("0")

            usage = row[index['UsageDate']] if 'UsageDate' in index else None
            records.append(CostRecord(
                usage_date=_parse_usage_date(usage) if usage is not None else (today or date.today()),
                resource_id=resource_id,
                resource_type=str(row[index['ResourceType']]) if 'ResourceType' in index else '',
                location=str(row[index['ResourceLocation']]) if 'ResourceLocation' in index else '',
                charge_type=str(row[index['ChargeType']]) if 'ChargeType' in index else '',
                cost=cost,
            ))

        if clamped:
            self.logger.warning(f"Clamped {clamped} negative cost rows (credits or refunds) to zero")
        return records

    def parse_trend_rows(self, response: Any) -> List[CostTrend]:
        index = _column_index(response)
        cost_column = next((index[c] for c in COST_COLUMNS if c in index), None)
        if cost_column is None or 'UsageDate' not in index or 'ResourceType' not in index:
            raise ValueError(f"Unexpected cost trend columns: {list(index)}")

        return [
            CostTrend(
                usage_date=_parse_usage_date(row[index['UsageDate']]),
                resource_type=str(row[index['ResourceType']] or ''),
                daily_cost=to_decimal(row[cost_column]),
            )
            for row in response.rows or []
        ]

    def build_recommendations(
        self,
        aggregates: Iterable[CostAggregate],
        inventory: Iterable[ResourceRecord],
        config: AuditConfiguration,
    ) -> List[CostRecommendation]:
        policy = config.policy
        high = Decimal(str(config.cost_threshold_high))
        medium = Decimal(str(config.cost_threshold_medium))
        recommendations = []

        for aggregate in aggregates:
            name = aggregate.identity.name or aggregate.resource_id
            if aggregate.total_cost > high:
                savings = aggregate.total_cost * Decimal(str(policy.cost_high_savings_factor))
                recommendations.append(CostRecommendation(
                    resource_name=name,
                    resource_type=aggregate.resource_type,
                    impact="High",
                    potential_savings=f"{savings:.2f}",
                    recommendation="Consider rightsizing or reserved instances",
                    category="Custom Analysis",
                ))
            elif aggregate.total_cost > medium:
                savings = aggregate.total_cost * Decimal(str(policy.cost_medium_savings_factor))
                recommendations.append(CostRecommendation(
                    resource_name=name,
                    resource_type=aggregate.resource_type,
                    impact="Medium",
                    potential_savings=f"{savings:.2f}",
                    recommendation="Review utilization and optimize",
                    category="Custom Analysis",
                ))

        recommendations.extend(self._stopped_vm_recommendations(inventory))
        return recommendations

    def _stopped_vm_recommendations(self, inventory: Iterable[ResourceRecord]) -> List[CostRecommendation]:
        return [
            CostRecommendation(
                resource_name=record.name,
                resource_type=record.identity.resource_type,
                impact="Medium",
                potential_savings=STOPPED_VM_SAVINGS,
                recommendation="VM is stopped/deallocated - consider deletion if not needed",
                category="Power State Analysis",
            )
            for record in inventory
            if record.is_stopped
        ]

    def _run_fallback(self, context: AuditContext, result: ModuleResult, reason: str) -> ModuleResult:
        """Degraded mode: estimates only, every row marked low confidence"""
        estimates = FallbackCostCalculator(context.config.policy).estimate_inventory(context.inventory)
        if not estimates:
            estimates = [CostEstimate(
                resource_name="(none)",
                resource_type="All",
                sku="",
                estimated_monthly_cost="Unknown",
                confidence=LOW_CONFIDENCE_MARKER,
                notes="No virtual machines or storage accounts in scope",
            )]

        recommendations = self._stopped_vm_recommendations(context.inventory)

        writer = context.writer
        result.files.append(writer.write_records("costs", CostEstimate, estimates))
        result.files.append(writer.write_records("costs", CostRecommendation, recommendations, side="recommendations"))
        result.records = {
            'estimates': estimates,
            'recommendations': recommendations,
        }
        result.degrade(f"Cost Management API unavailable, estimates used: {reason}")
        self.logger.warning("Fallback cost collection completed with limited accuracy")
        return result
