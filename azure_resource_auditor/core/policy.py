"""Heuristic tables used to score findings and estimate costs

The cost-impact tiers, savings brackets and fallback estimates are rough
judgment calls rather than derived from pricing data, so every table can be
overridden from the ``policy`` section of the configuration file.
"""

from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Mapping, Optional, Tuple

from .exceptions import ValidationError
from .models import CostImpact, RiskLevel, SavingsRange


def _impact_table(high: Any, medium: Any, low: Any) -> Dict[CostImpact, Any]:
    return {CostImpact.HIGH: high, CostImpact.MEDIUM: medium, CostImpact.LOW: low}


@dataclass(frozen=True)
class AuditPolicy:
    """Configurable scoring and estimation policy"""

    # Orphan cost-impact rules
    disk_high_gb: int = 512
    disk_medium_gb: int = 128
    snapshot_medium_gb: int = 100
    public_ip_standard_impact: CostImpact = CostImpact.MEDIUM
    public_ip_basic_impact: CostImpact = CostImpact.LOW
    load_balancer_impact: CostImpact = CostImpact.HIGH
    vm_family_impact: Tuple[Tuple[str, CostImpact], ...] = (
        ("Standard_D", CostImpact.HIGH),
        ("Standard_B", CostImpact.MEDIUM),
    )
    vm_default_impact: CostImpact = CostImpact.LOW

    # Recommendation scoring
    priority_by_impact: Dict[CostImpact, int] = field(default_factory=lambda: _impact_table(1, 2, 3))
    orphan_savings: Dict[CostImpact, str] = field(
        default_factory=lambda: _impact_table("$100-500/month", "$25-100/month", "$5-25/month")
    )
    stopped_vm_savings: Dict[CostImpact, str] = field(
        default_factory=lambda: _impact_table("$200-500/month", "$50-200/month", "$10-50/month")
    )
    old_resource_savings: str = "$10-50/month"
    old_snapshot_savings: str = "$5-25/month"
    empty_group_savings: str = "$0/month"
    high_cost_priority: int = 2
    high_cost_savings_factor: float = 0.3
    old_resource_priority: int = 3
    compute_min_risk: RiskLevel = RiskLevel.MEDIUM
    stopped_vm_risk: RiskLevel = RiskLevel.HIGH
    high_cost_risk: RiskLevel = RiskLevel.MEDIUM

    # Cost module recommendations
    cost_high_savings_factor: float = 0.2
    cost_medium_savings_factor: float = 0.1

    # Fallback monthly estimates when the cost API is unavailable
    vm_estimates: Tuple[Tuple[str, str], ...] = (
        ("Standard_B", "50-150"),
        ("Standard_D", "100-300"),
        ("Standard_F", "80-250"),
    )
    vm_default_estimate: str = "30-500"
    storage_estimates: Tuple[Tuple[str, str], ...] = (
        ("Standard", "20-100"),
        ("Premium", "50-200"),
    )
    storage_default_estimate: str = "10-150"

    def disk_impact(self, size_gb: Optional[int]) -> CostImpact:
        size = size_gb or 0
        if size > self.disk_high_gb:
            return CostImpact.HIGH
        if size > self.disk_medium_gb:
            return CostImpact.MEDIUM
        return CostImpact.LOW

    def snapshot_impact(self, size_gb: Optional[int]) -> CostImpact:
        return CostImpact.MEDIUM if (size_gb or 0) > self.snapshot_medium_gb else CostImpact.LOW

    def public_ip_impact(self, sku_name: Optional[str]) -> CostImpact:
        if (sku_name or "").lower() == "standard":
            return self.public_ip_standard_impact
        return self.public_ip_basic_impact

    def vm_impact(self, vm_size: Optional[str]) -> CostImpact:
        return _match_prefix(vm_size, self.vm_family_impact, self.vm_default_impact)

    def vm_estimate(self, vm_size: Optional[str]) -> str:
        return _match_prefix(vm_size, self.vm_estimates, self.vm_default_estimate)

    def storage_estimate(self, sku_name: Optional[str]) -> str:
        return _match_prefix(sku_name, self.storage_estimates, self.storage_default_estimate)

    def priority_for(self, impact: CostImpact) -> int:
        return self.priority_by_impact[impact]

    def orphan_savings_for(self, impact: CostImpact) -> SavingsRange:
        return SavingsRange.parse(self.orphan_savings[impact])

    def stopped_vm_savings_for(self, impact: CostImpact) -> SavingsRange:
        return SavingsRange.parse(self.stopped_vm_savings[impact])

    def validate(self) -> None:
        """Reject tables that would rank a cheaper tier above a costlier one"""
        priorities = self.priority_by_impact
        missing = [impact.value for impact in CostImpact if impact not in priorities]
        if missing:
            raise ValidationError(f"Priority table is missing tiers: {', '.join(missing)}")
        for value in priorities.values():
            if value not in (1, 2, 3):
                raise ValidationError(f"Priority must be between 1 and 3, got {value}")
        if not priorities[CostImpact.HIGH] <= priorities[CostImpact.MEDIUM] <= priorities[CostImpact.LOW]:
            raise ValidationError(
                "Priority table must be monotonic: High impact cannot rank below Medium or Low "
                f"(got High={priorities[CostImpact.HIGH]}, Medium={priorities[CostImpact.MEDIUM]}, "
                f"Low={priorities[CostImpact.LOW]})"
            )
        for name in ("high_cost_priority", "old_resource_priority"):
            if getattr(self, name) not in (1, 2, 3):
                raise ValidationError(f"{name} must be between 1 and 3, got {getattr(self, name)}")
        if self.disk_medium_gb >= self.disk_high_gb:
            raise ValidationError(
                f"disk_medium_gb ({self.disk_medium_gb}) must be lower than disk_high_gb ({self.disk_high_gb})"
            )

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]], base: Optional["AuditPolicy"] = None) -> "AuditPolicy":
        """Overlay a YAML ``policy`` mapping on top of the defaults"""
        policy = base or cls()
        if not data:
            return policy

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValidationError(f"Unknown policy settings: {', '.join(unknown)}")

        updates: Dict[str, Any] = {}
        try:
            for key, value in data.items():
                current = getattr(policy, key)
                if isinstance(current, CostImpact):
                    updates[key] = CostImpact.parse(str(value))
                elif isinstance(current, RiskLevel):
                    updates[key] = RiskLevel.parse(str(value))
                elif isinstance(current, dict):
                    merged = dict(current)
                    for tier, tier_value in (value or {}).items():
                        merged[CostImpact.parse(str(tier))] = type(next(iter(current.values())))(tier_value)
                    updates[key] = merged
                elif key in ("vm_family_impact",):
                    updates[key] = tuple((prefix, CostImpact.parse(str(tier))) for prefix, tier in value.items())
                elif isinstance(current, tuple):
                    updates[key] = tuple((prefix, str(estimate)) for prefix, estimate in value.items())
                else:
                    updates[key] = type(current)(value)
        except (TypeError, ValueError, AttributeError) as e:
            raise ValidationError(f"Invalid policy setting: {e}")

        result = replace(policy, **updates)
        result.validate()
        return result

    def to_dict(self) -> Dict[str, Any]:
        """Plain representation suitable for YAML output"""
        output: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, (CostImpact, RiskLevel)):
                output[f.name] = value.value
            elif isinstance(value, dict):
                output[f.name] = {tier.value: tier_value for tier, tier_value in value.items()}
            elif isinstance(value, tuple):
                output[f.name] = {
                    prefix: (item.value if isinstance(item, CostImpact) else item) for prefix, item in value
                }
            else:
                output[f.name] = value
        return output


def _match_prefix(value: Optional[str], table: Tuple[Tuple[str, Any], ...], default: Any) -> Any:
    """First table entry whose prefix the value starts with, ignoring case"""
    text = (value or "").lower()
    for prefix, result in table:
        if text.startswith(prefix.lower()):
            return result
    return default
