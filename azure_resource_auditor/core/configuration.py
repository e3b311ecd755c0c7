"""Immutable run configuration"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Tuple

from .models import CostTimePeriod
from .policy import AuditPolicy


def _report_stamp() -> str:
    return datetime.now().strftime("%Y%m%d_%H%M%S")


@dataclass(frozen=True)
class AuditConfiguration:
    """Configuration for an audit run, built once at startup"""
    subscription: str = ""
    resource_groups: Tuple[str, ...] = ()
    output_dir: str = "./reports"
    output_format: str = "csv"
    enable_cost_analysis: bool = True
    enable_orphan_detection: bool = True
    enable_activity_tracking: bool = True
    dry_run: bool = False
    parallel_jobs: int = 5
    verbose: bool = False
    time_period: str = CostTimePeriod.MONTH_TO_DATE.value
    cost_start_date: Optional[str] = None
    cost_end_date: Optional[str] = None
    days_back: int = 30
    cost_threshold_high: float = 500.0
    cost_threshold_medium: float = 100.0
    safety_tagging_enabled: bool = True
    auto_tag: bool = False
    module_timeout_seconds: float = 900.0
    request_timeout_seconds: float = 120.0
    retry_attempts: int = 3
    retry_delay_seconds: float = 5.0
    auth_method: str = "default"
    old_resource_days: int = 365
    excluded_resource_types: Tuple[str, ...] = ()
    log_file: Optional[str] = None
    report_date: str = field(default_factory=_report_stamp)
    policy: AuditPolicy = field(default_factory=AuditPolicy)

    @property
    def cost_period(self) -> CostTimePeriod:
        return CostTimePeriod(self.time_period)

    @property
    def tagging_allowed(self) -> bool:
        """Safety tags are applied only when enabled, requested and not a dry run"""
        return self.safety_tagging_enabled and self.auto_tag and not self.dry_run
