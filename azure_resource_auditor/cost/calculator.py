"""Size and SKU based cost estimates for when the Cost Management API is unavailable"""

from typing import Iterable, List

from ..core.models import CostEstimate, ResourceKind, ResourceRecord
from ..core.policy import AuditPolicy
from ..utils.logger import setup_logger


class FallbackCostCalculator:
    """Estimate monthly cost ranges for VMs and storage accounts from the inventory"""

    def __init__(self, policy: AuditPolicy):
        self.logger = setup_logger(self.__class__.__name__)
        self.policy = policy

    def estimate(self, record: ResourceRecord) -> CostEstimate:
        if record.kind == ResourceKind.VIRTUAL_MACHINE:
            vm_size = record.size or "Unknown"
            return CostEstimate(
                resource_name=record.name,
                resource_type=record.identity.resource_type,
                sku=vm_size,
                estimated_monthly_cost=self.policy.vm_estimate(record.size) if record.size else "Unknown",
                notes=f"VM Size: {vm_size}",
            )

        sku = record.sku_name or "Unknown"
        return CostEstimate(
            resource_name=record.name,
            resource_type=record.identity.resource_type,
            sku=sku,
            estimated_monthly_cost=self.policy.storage_estimate(record.sku_name) if record.sku_name else "Unknown",
            notes=f"SKU: {sku}",
        )

    def estimate_inventory(self, inventory: Iterable[ResourceRecord]) -> List[CostEstimate]:
        """Estimates for every VM and storage account; other kinds have no fallback"""
        estimates = [
            self.estimate(record)
            for record in inventory
            if record.kind in (ResourceKind.VIRTUAL_MACHINE, ResourceKind.STORAGE_ACCOUNT)
        ]
        self.logger.info(f"Produced {len(estimates)} fallback cost estimates")
        return estimates
