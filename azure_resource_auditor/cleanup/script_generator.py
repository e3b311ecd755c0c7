"""Reviewable bash cleanup script generation

The generated script never deletes anything as written: it runs in dry-run
mode, asks for confirmation per item, keeps every Azure CLI command commented
out, and leaves the call to ``main`` commented out.
"""

import re
import shlex
from typing import Dict, List, Sequence

from jinja2 import Template

from ..core.models import Recommendation, ResourceKind

SCRIPT_TEMPLATE = """#!/bin/bash
# Auto-generated Azure Resource Cleanup Script
# Subscription: {{ subscription_id }}
# Report date: {{ report_date }}
# IMPORTANT: Review carefully before execution!

set -euo pipefail

# Configuration
DRY_RUN="true"  # Set to "false" to execute actual deletions
REQUIRE_CONFIRMATION="true"

RED='\\033[0;31m'
GREEN='\\033[0;32m'
YELLOW='\\033[1;33m'
NC='\\033[0m'

log_info() {
    echo -e "${GREEN}[INFO]${NC} $1"
}

log_warn() {
    echo -e "${YELLOW}[WARN]${NC} $1"
}

log_error() {
    echo -e "${RED}[ERROR]${NC} $1"
}

confirm_action() {
    if [[ "$REQUIRE_CONFIRMATION" == "true" ]]; then
        echo -n "Proceed with this action? (y/N): "
        read -r response
        [[ "$response" =~ ^[Yy]$ ]]
    else
        return 0
    fi
}
{% for item in items %}
# Priority {{ item.priority }}: {{ item.type }} - {{ item.label }}
# Risk: {{ item.risk }} | Savings: {{ item.savings }} | Verified: {{ item.verified }}
# Safety checks: {{ item.checks }}
{{ item.function }}() {
    log_info {{ item.processing }}
    log_warn {{ item.action }}

    if confirm_action; then
        if [[ "$DRY_RUN" == "true" ]]; then
            log_info {{ item.dry_run }}
        else
            # {{ item.command }}
            log_warn "Deletion command is commented out - review and uncomment to execute"
        fi
    else
        log_info {{ item.skipped }}
    fi
}
{% endfor %}
# Main execution
main() {
    log_info "Azure Resource Cleanup Script"
    log_info "DRY RUN mode: $DRY_RUN"

    if [[ "$DRY_RUN" != "true" ]]; then
        log_warn "WARNING: This will perform actual deletions!"
        log_warn "Make sure you have backups and approvals!"
        echo -n "Continue with actual deletions? (type 'DELETE' to confirm): "
        read -r confirmation
        if [[ "$confirmation" != "DELETE" ]]; then
            log_info "Aborted by user"
            exit 0
        fi
    fi

    # Execute cleanup functions (uncomment as needed)
{% for priority in (1, 2, 3) %}
    # Priority {{ priority }} items ({{ groups[priority] | length }} items)
{% for function in groups[priority] %}    # {{ function }}
{% endfor %}{% endfor %}
    log_info "Cleanup script completed"
}

# Uncomment the following line to execute the script
# main "$@"
"""

DELETE_COMMANDS = {
    ResourceKind.VIRTUAL_MACHINE: "az vm delete --name {name} --resource-group {group} --yes",
    ResourceKind.DISK: "az disk delete --name {name} --resource-group {group} --yes",
    ResourceKind.SNAPSHOT: "az snapshot delete --name {name} --resource-group {group}",
    ResourceKind.NETWORK_INTERFACE: "az network nic delete --name {name} --resource-group {group}",
    ResourceKind.PUBLIC_IP: "az network public-ip delete --name {name} --resource-group {group}",
    ResourceKind.NETWORK_SECURITY_GROUP: "az network nsg delete --name {name} --resource-group {group}",
    ResourceKind.LOAD_BALANCER: "az network lb delete --name {name} --resource-group {group}",
    ResourceKind.RESOURCE_GROUP: "az group delete --name {group} --yes",
}


def delete_command(recommendation: Recommendation) -> str:
    """Azure CLI command that would remove the resource"""
    identity = recommendation.identity
    template = DELETE_COMMANDS.get(identity.kind)
    if template is None:
        return f"az resource delete --ids {shlex.quote(identity.resource_id)}"
    return template.format(name=shlex.quote(identity.name), group=shlex.quote(identity.resource_group))


def function_name(name: str, taken: Dict[str, int]) -> str:
    """cleanup_<name> with non-alphanumerics replaced; suffixed when a name repeats"""
    base = f"cleanup_{re.sub(r'[^a-zA-Z0-9]', '_', name)}"
    count = taken.get(base, 0)
    taken[base] = count + 1
    return base if count == 0 else f"{base}_{count + 1}"


def _comment(text: str) -> str:
    return " ".join(text.split())


class CleanupScriptGenerator:
    """Render a bash script with one guarded function per recommendation"""

    def generate(
        self,
        recommendations: Sequence[Recommendation],
        subscription_id: str = "",
        report_date: str = "",
    ) -> str:
        taken: Dict[str, int] = {}
        items: List[Dict[str, str]] = []
        groups: Dict[int, List[str]] = {1: [], 2: [], 3: []}

        for rec in recommendations:
            name = rec.identity.name
            function = function_name(name, taken)
            groups.setdefault(rec.priority, []).append(function)
            items.append({
                'priority': str(rec.priority),
                'type': rec.recommendation_type.value,
                'label': _comment(f"{name} ({rec.category})"),
                'risk': rec.risk_level.value,
                'savings': str(rec.estimated_savings),
                'verified': "Yes" if rec.verified else "Unverified",
                'checks': _comment(";".join(rec.safety_checks)),
                'function': function,
                'processing': shlex.quote(f"Processing: {name} ({rec.recommendation_type.value})"),
                'action': shlex.quote(f"Action: {rec.action}"),
                'dry_run': shlex.quote(f"DRY RUN: Would execute cleanup for {name}"),
                'skipped': shlex.quote(f"Skipped: {name}"),
                'command': delete_command(rec),
            })

        return Template(SCRIPT_TEMPLATE).render(
            subscription_id=subscription_id,
            report_date=report_date,
            items=items,
            groups=groups,
        ) + "\n"
