"""Shared fixtures and builders for the test suite."""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from azure_resource_auditor.core.configuration import AuditConfiguration
from azure_resource_auditor.core.interfaces import AuditContext
from azure_resource_auditor.core.models import ResourceIdentity, ResourceRecord
from azure_resource_auditor.reporting.writers import ReportWriter
from azure_resource_auditor.utils.retry import RetryPolicy

SUBSCRIPTION_ID = "11111111-2222-3333-4444-555555555555"
REPORT_DATE = "20240115_103000"
NOW = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)


def make_record(
    name,
    resource_type="Microsoft.Compute/virtualMachines",
    resource_group="rg-app",
    power_state="",
    size="",
    sku_name="",
    tags=None,
    created_days_ago=10,
    location="eastus",
):
    return ResourceRecord(
        identity=ResourceIdentity(
            subscription_id=SUBSCRIPTION_ID,
            resource_group=resource_group,
            name=name,
            resource_type=resource_type,
        ),
        location=location,
        subscription_name="Production",
        power_state=power_state,
        provisioning_state="Succeeded",
        creation_time=NOW - timedelta(days=created_days_ago) if created_days_ago is not None else None,
        sku_name=sku_name,
        size=size,
        tags=tags or {},
    )


def arm_id(resource_group, provider_type, name):
    return f"/subscriptions/{SUBSCRIPTION_ID}/resourceGroups/{resource_group}/providers/{provider_type}/{name}"


def sdk_resource(resource_group, provider_type, name, **attributes):
    """Minimal stand-in for an Azure SDK model object."""
    defaults = {
        'id': arm_id(resource_group, provider_type, name),
        'name': name,
        'location': "eastus",
        'tags': {},
    }
    defaults.update(attributes)
    return SimpleNamespace(**defaults)


@pytest.fixture
def config(tmp_path):
    return AuditConfiguration(
        subscription=SUBSCRIPTION_ID,
        output_dir=str(tmp_path),
        report_date=REPORT_DATE,
        retry_attempts=1,
        retry_delay_seconds=0,
    )


@pytest.fixture
def writer(tmp_path):
    return ReportWriter(str(tmp_path), REPORT_DATE)


@pytest.fixture
def clients():
    return {
        'resource': MagicMock(),
        'compute': MagicMock(),
        'network': MagicMock(),
        'monitor': MagicMock(),
        'storage': MagicMock(),
        'cost': MagicMock(),
        'graph': MagicMock(),
    }


@pytest.fixture
def make_context(config, writer, clients):
    def _make(inventory=(), config_override=None):
        return AuditContext(
            config=config_override or config,
            subscription_id=SUBSCRIPTION_ID,
            clients=clients,
            writer=writer,
            retry_policy=RetryPolicy(attempts=1, delay_seconds=0),
            subscription_name="Production",
            inventory=tuple(inventory),
            clock=lambda: NOW,
        )
    return _make
