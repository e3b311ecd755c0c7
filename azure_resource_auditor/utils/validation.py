"""Input validation performed before any Azure call"""

import re
from datetime import date
from typing import Iterable, List, Optional

from ..core.exceptions import ValidationError
from ..core.models import CostTimePeriod


SUBSCRIPTION_GUID_PATTERN = re.compile(
    r'^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$'
)
SUBSCRIPTION_NAME_PATTERN = re.compile(r'^[a-zA-Z0-9][a-zA-Z0-9 _-]*$')
RESOURCE_GROUP_PATTERN = re.compile(r'^[a-zA-Z0-9._()-]+$')
RESOURCE_TYPE_PATTERN = re.compile(r'^[A-Za-z0-9.]+/[A-Za-z0-9./]+$')

OUTPUT_FORMATS = ("csv", "json")
AUTH_METHODS = ("default", "cli", "environment", "managed_identity")
MAX_PARALLEL_JOBS = 50
MAX_ACTIVITY_DAYS = 90


def is_subscription_guid(value: str) -> bool:
    return bool(SUBSCRIPTION_GUID_PATTERN.match(value or ""))


def validate_subscription(value: Optional[str]) -> str:
    """Accept a subscription GUID or display name"""
    subscription = (value or "").strip()
    if not subscription:
        raise ValidationError("Subscription ID is required")
    if not (is_subscription_guid(subscription) or SUBSCRIPTION_NAME_PATTERN.match(subscription)):
        raise ValidationError(f"Invalid subscription identifier: {subscription!r}")
    return subscription


def validate_resource_group_name(name: str) -> str:
    if not name or len(name) > 90:
        raise ValidationError(f"Resource group name must be 1-90 characters: {name!r}")
    if name.endswith("."):
        raise ValidationError(f"Resource group name cannot end with a period: {name!r}")
    if not RESOURCE_GROUP_PATTERN.match(name):
        raise ValidationError(f"Invalid resource group name: {name!r}")
    return name


def validate_resource_groups(names: Iterable[str]) -> List[str]:
    validated = []
    for name in names:
        name = name.strip()
        if name:
            validated.append(validate_resource_group_name(name))
    return validated


def validate_resource_types(types: Iterable[str]) -> List[str]:
    """Namespace/type strings only; these are interpolated into KQL filters"""
    validated = []
    for resource_type in types:
        if not RESOURCE_TYPE_PATTERN.match(resource_type or ""):
            raise ValidationError(f"Invalid resource type: {resource_type!r}; expected Namespace/type")
        validated.append(resource_type)
    return validated


def validate_output_format(value: str) -> str:
    fmt = (value or "").lower()
    if fmt not in OUTPUT_FORMATS:
        raise ValidationError(f"Invalid output format {value!r}; expected one of: {', '.join(OUTPUT_FORMATS)}")
    return fmt


def validate_parallel_jobs(value: int) -> int:
    if not 1 <= value <= MAX_PARALLEL_JOBS:
        raise ValidationError(f"Parallel jobs must be between 1 and {MAX_PARALLEL_JOBS}, got {value}")
    return value


def validate_days_back(value: int) -> int:
    """Activity log retention caps the lookback window"""
    if value < 1 or value > MAX_ACTIVITY_DAYS:
        raise ValidationError(f"Days back must be between 1 and {MAX_ACTIVITY_DAYS}, got {value}")
    return value


def validate_iso_date(value: str, label: str = "date") -> date:
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {label} {value!r}; expected YYYY-MM-DD")


def validate_time_period(period: str, start: Optional[str] = None, end: Optional[str] = None) -> CostTimePeriod:
    try:
        time_period = CostTimePeriod(period)
    except ValueError:
        choices = ", ".join(p.value for p in CostTimePeriod)
        raise ValidationError(f"Invalid time period {period!r}; expected one of: {choices}")

    if time_period == CostTimePeriod.CUSTOM:
        if not start or not end:
            raise ValidationError("Custom time period requires both a start and an end date")
        start_date = validate_iso_date(start, "start date")
        end_date = validate_iso_date(end, "end date")
        if start_date > end_date:
            raise ValidationError(f"Start date {start} is after end date {end}")
    return time_period


def validate_auth_method(value: str) -> str:
    method = (value or "").lower().replace("-", "_")
    if method not in AUTH_METHODS:
        raise ValidationError(f"Invalid auth method {value!r}; expected one of: {', '.join(AUTH_METHODS)}")
    return method


def validate_report_date(value: str) -> str:
    if not re.match(r'^\d{8}_\d{6}$', value or ""):
        raise ValidationError(f"Invalid report date {value!r}; expected YYYYmmdd_HHMMSS")
    return value
