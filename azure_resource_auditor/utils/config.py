"""Configuration loading and management"""

import os
from dataclasses import fields, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from ..core.configuration import AuditConfiguration
from ..core.exceptions import ValidationError
from ..core.policy import AuditPolicy
from .logger import setup_logger
from .validation import (
    validate_auth_method,
    validate_days_back,
    validate_output_format,
    validate_parallel_jobs,
    validate_report_date,
    validate_resource_groups,
    validate_resource_types,
    validate_subscription,
    validate_time_period,
)

ENV_PREFIX = "AZURE_AUDIT_"
TUPLE_FIELDS = ("resource_groups", "excluded_resource_types")

# YAML sections whose nested keys map to a different flat name
SECTION_ALIASES = {
    "cost_thresholds_high": "cost_threshold_high",
    "cost_thresholds_medium": "cost_threshold_medium",
    "modules_cost_analysis": "enable_cost_analysis",
    "modules_orphan_detection": "enable_orphan_detection",
    "modules_activity_tracking": "enable_activity_tracking",
}


class ConfigurationLoader:
    """Build the run configuration from defaults, file, environment and overrides"""

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self.logger = setup_logger(self.__class__.__name__)
        self._environ = os.environ if environ is None else environ

    def load_configuration(
        self,
        config_file: Optional[str] = None,
        **overrides
    ) -> AuditConfiguration:
        """Load configuration from file and environment variables

        Precedence, lowest first: defaults, YAML file, AZURE_AUDIT_* variables,
        keyword overrides whose value is not None.
        """
        config_dict: Dict[str, Any] = {}
        policy_data: Dict[str, Any] = {}

        if config_file:
            file_config = self._load_from_file(config_file, required=True)
        else:
            file_config = self._load_default_config()

        if file_config:
            policy_data = file_config.pop("policy", None) or {}
            config_dict.update(file_config)

        config_dict.update(self._load_from_environment())
        config_dict.update({k: v for k, v in overrides.items() if v is not None})

        known_keys = {f.name for f in fields(AuditConfiguration)} - {"policy"}
        unknown = sorted(set(config_dict) - known_keys)
        for key in unknown:
            self.logger.warning(f"Ignoring unknown configuration key: {key}")
        filtered = {k: v for k, v in config_dict.items() if k in known_keys}

        for key in TUPLE_FIELDS:
            if key in filtered:
                filtered[key] = tuple(self._as_list(filtered[key]))

        try:
            config = AuditConfiguration(**filtered)
        except TypeError as e:
            raise ValidationError(f"Invalid configuration: {e}")

        config = replace(config, policy=AuditPolicy.from_dict(policy_data))
        return self._validate_configuration(config)

    def _load_from_file(self, config_file: str, required: bool = False) -> Optional[Dict[str, Any]]:
        """Load configuration from YAML file"""

        config_path = Path(config_file)
        if not config_path.exists():
            if required:
                raise ValidationError(f"Configuration file not found: {config_file}")
            return None

        if config_path.suffix.lower() not in ('.yml', '.yaml'):
            raise ValidationError(f"Unsupported config file format: {config_path.suffix}")

        try:
            with open(config_path, 'r') as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValidationError(f"Failed to parse configuration file {config_file}: {e}")

        if not isinstance(config_data, dict):
            raise ValidationError(f"Configuration file {config_file} must contain a mapping")

        self.logger.info(f"Loaded configuration from: {config_file}")
        policy = config_data.pop("policy", None)
        flattened = self._flatten_config(config_data)
        if policy is not None:
            flattened["policy"] = policy
        return flattened

    def _load_default_config(self) -> Optional[Dict[str, Any]]:
        """Try to load from default configuration locations"""

        default_locations = [
            "azure_resource_auditor.yml",
            "azure_resource_auditor.yaml",
            os.path.expanduser("~/.azure_resource_auditor.yml"),
            os.path.expanduser("~/.config/azure_resource_auditor/config.yml"),
        ]

        for location in default_locations:
            if os.path.exists(location):
                return self._load_from_file(location)

        return None

    def _load_from_environment(self) -> Dict[str, Any]:
        """Load configuration from AZURE_AUDIT_* environment variables"""

        env_config = {}

        env_mapping = {
            'SUBSCRIPTION': ('subscription', str),
            'RESOURCE_GROUPS': ('resource_groups', self._parse_list),
            'OUTPUT_DIR': ('output_dir', str),
            'OUTPUT_FORMAT': ('output_format', str),
            'PARALLEL_JOBS': ('parallel_jobs', int),
            'TIME_PERIOD': ('time_period', str),
            'DAYS_BACK': ('days_back', int),
            'COST_THRESHOLD_HIGH': ('cost_threshold_high', float),
            'COST_THRESHOLD_MEDIUM': ('cost_threshold_medium', float),
            'SAFETY_TAGGING_ENABLED': ('safety_tagging_enabled', self._parse_bool),
            'MODULE_TIMEOUT_SECONDS': ('module_timeout_seconds', float),
            'REQUEST_TIMEOUT_SECONDS': ('request_timeout_seconds', float),
            'RETRY_ATTEMPTS': ('retry_attempts', int),
            'RETRY_DELAY_SECONDS': ('retry_delay_seconds', float),
            'AUTH_METHOD': ('auth_method', str),
            'OLD_RESOURCE_DAYS': ('old_resource_days', int),
            'EXCLUDE_RESOURCE_TYPES': ('excluded_resource_types', self._parse_list),
            'LOG_FILE': ('log_file', str),
        }

        for suffix, (config_key, parser) in env_mapping.items():
            env_var = ENV_PREFIX + suffix
            value = self._environ.get(env_var)
            if value is not None:
                try:
                    env_config[config_key] = parser(value)
                    self.logger.debug(f"Loaded {config_key} from environment: {value}")
                except ValueError as e:
                    raise ValidationError(f"Invalid value for {env_var}={value!r}: {e}")

        return env_config

    def _flatten_config(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Flatten nested configuration dictionary"""

        flattened = {}

        def _flatten(obj, parent_key=''):
            if isinstance(obj, dict):
                for key, value in obj.items():
                    new_key = f"{parent_key}_{key}" if parent_key else key
                    _flatten(value, new_key)
            else:
                flattened[SECTION_ALIASES.get(parent_key, parent_key)] = obj

        _flatten(config_data)
        return flattened

    def _as_list(self, value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return self._parse_list(value)
        return [str(item).strip() for item in value if str(item).strip()]

    def _parse_list(self, value: str) -> List[str]:
        """Parse comma-separated string into list"""
        if not value.strip():
            return []
        return [item.strip() for item in value.split(',') if item.strip()]

    def _parse_bool(self, value: str) -> bool:
        """Parse string into boolean"""
        return value.lower() in ('true', '1', 'yes', 'on', 'enabled')

    def _validate_configuration(self, config: AuditConfiguration) -> AuditConfiguration:
        """Validate configuration values and return the normalized configuration"""

        if config.subscription:
            validate_subscription(config.subscription)
        validate_resource_groups(config.resource_groups)
        validate_resource_types(config.excluded_resource_types)
        validate_parallel_jobs(config.parallel_jobs)
        validate_days_back(config.days_back)
        validate_time_period(config.time_period, config.cost_start_date, config.cost_end_date)
        validate_report_date(config.report_date)

        if config.cost_threshold_high <= config.cost_threshold_medium:
            self.logger.warning("High cost threshold should be higher than medium threshold")
        if config.cost_threshold_medium < 0:
            raise ValidationError(f"Cost thresholds must be non-negative, got {config.cost_threshold_medium}")

        if config.module_timeout_seconds <= 0:
            raise ValidationError(f"Module timeout must be positive, got {config.module_timeout_seconds}")
        if config.request_timeout_seconds <= 0:
            raise ValidationError(f"Request timeout must be positive, got {config.request_timeout_seconds}")

        if config.retry_attempts < 1:
            raise ValidationError(f"Retry attempts must be at least 1, got {config.retry_attempts}")

        if config.old_resource_days < 1:
            raise ValidationError(f"Old resource age must be at least 1 day, got {config.old_resource_days}")

        if config.parallel_jobs > 20:
            self.logger.warning("High number of parallel jobs may cause API rate limiting")

        self.logger.debug("Configuration validation completed")
        return replace(
            config,
            output_format=validate_output_format(config.output_format),
            auth_method=validate_auth_method(config.auth_method),
        )


def create_sample_config(output_file: str = "azure_resource_auditor_sample.yml") -> str:
    """Create a sample configuration file"""

    sample_config = {
        'subscription': '00000000-0000-0000-0000-000000000000',
        'resource_groups': [],
        'output_dir': './reports',
        'output_format': 'csv',
        'parallel_jobs': 5,
        'modules': {
            'cost_analysis': True,
            'orphan_detection': True,
            'activity_tracking': True,
        },
        'time_period': 'MonthToDate',
        'days_back': 30,
        'cost_thresholds': {
            'high': 500.0,
            'medium': 100.0,
        },
        'safety_tagging_enabled': True,
        'module_timeout_seconds': 900,
        'request_timeout_seconds': 120,
        'retry': {
            'attempts': 3,
            'delay_seconds': 5,
        },
        'auth_method': 'default',
        'old_resource_days': 365,
        'excluded_resource_types': ['Microsoft.Insights/components'],
        'policy': AuditPolicy().to_dict(),
    }

    with open(output_file, 'w') as f:
        f.write("# Azure Resource Auditor Configuration\n")
        f.write("# Environment variables prefixed with AZURE_AUDIT_ override these values\n\n")
        yaml.safe_dump(sample_config, f, default_flow_style=False, indent=2, sort_keys=False)

    return output_file
