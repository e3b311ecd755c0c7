#!/usr/bin/env python3
"""Setup script for Azure Resource Auditor"""
from setuptools import setup, find_packages

setup(
    name="azure-resource-auditor",
    version="2.0.0",
    description="Azure resource inventory, cost, orphan and activity auditing with cleanup recommendations",
    author="Azure Cost Optimization Team",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "azure-core>=1.26.0",
        "azure-identity>=1.12.0",
        "azure-mgmt-resource>=21.0.0,<25",
        "azure-mgmt-resourcegraph>=8.0.0",
        "azure-mgmt-compute>=29.0.0",
        "azure-mgmt-network>=22.0.0",
        "azure-mgmt-monitor>=6.0.0",
        "azure-mgmt-storage>=20.0.0",
        "azure-mgmt-costmanagement>=4.0.0",
        "azure-mgmt-subscription>=3.1.1",
        "tenacity>=8.0.0",
        "jinja2>=3.1.0",
        "pyyaml>=6.0",
        "rich>=12.0.0",
        "typer>=0.7.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-mock>=3.10.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "azure-audit=azure_resource_auditor.cli.main:main",
            "azure-audit-module=azure_resource_auditor.cli.modules:main",
        ],
    },
    python_requires=">=3.9",
)
