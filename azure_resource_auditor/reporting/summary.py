"""Plain-text run and cleanup summaries"""

from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Mapping, Optional, Sequence

from jinja2 import Template

from ..core.models import (
    OLD_AGE_CATEGORY,
    AuditSummary,
    CostImpact,
    CreatorSummary,
    DeletionRecord,
    OrphanCategory,
    OrphanFinding,
    Recommendation,
    RecommendationType,
    ReportFile,
    ResourceOwnership,
    StorageAccountReview,
    utc_now,
)
from ..utils.tags import UNKNOWN

RUN_SUMMARY_TEMPLATE = """Azure Resource Audit Summary Report
===================================
Generated: {{ generated }}
Run ID: {{ summary.run_id }}
Subscription: {{ subscription }}
Resource Groups: {{ resource_groups }}
Dry Run: {{ 'Yes' if summary.dry_run else 'No' }}

Module Status:
{% for stage in summary.stages %}
  - {{ stage.name }}: {{ stage.state.value }}{{ ' (%.1fs)' % stage.duration_seconds if stage.duration_seconds else '' }}
{% if stage.error %}
      error: {{ stage.error }}
{% endif %}
{% for warning in stage.warnings %}
      warning: {{ warning }}
{% endfor %}
{% endfor %}

Report Files Generated:
{% for file in files %}
  - {{ file.name }} ({{ file.record_count }} records)
{% else %}
  (none)
{% endfor %}

Next Steps:
1. Review resource inventory for accuracy
2. Analyze cost report for optimization opportunities
3. Validate orphaned resources before cleanup
4. Use cleanup recommendations with safety tagging
"""

CLEANUP_SUMMARY_TEMPLATE = """Azure Resource Cleanup Summary
==============================
Generated: {{ generated }}
Subscription: {{ subscription_id }}

Cleanup Recommendations: {{ total }} total
- Priority 1 (High Impact): {{ priorities[1] }}
- Priority 2 (Medium Impact): {{ priorities[2] }}
- Priority 3 (Low Impact): {{ priorities[3] }}

Resource Categories:
- Orphaned Resources: {{ types['Orphaned Resource'] }}
- Stopped VMs: {{ types['Stopped VM'] }}
- High Cost Resources: {{ types['High Cost Resource'] }}
- Old Resources: {{ types['Old Resource'] }}
- Old Snapshots: {{ types['Old Snapshot'] }}

Safety Features:
- Dry run mode: {{ 'true' if dry_run else 'false' }}
- Safety tagging: {{ 'applied to %d resources' % tagged_count if tagging_applied else 'not applied' }}
- Risk assessment included
- Manual confirmation required

Top Priority Items:
{% for rec in top %}
- {{ rec.identity.name }} ({{ rec.recommendation_type.value }}, {{ rec.estimated_savings }})
{% else %}
- (none)
{% endfor %}

{% if unverified %}
Unverified Resources (not found in inventory):
{% for rec in unverified %}
- {{ rec.identity.name }} ({{ rec.category }})
{% endfor %}

{% endif %}
Next Steps:
1. Review all recommendations carefully
2. Validate with resource owners
3. Test cleanup in non-production environment
4. Execute high-priority items first
5. Monitor for any issues after cleanup

Files Generated:
{% for name in file_names %}
- {{ name }}
{% endfor %}
"""


ORPHAN_SUMMARY_TEMPLATE = """Orphaned Resource Detection Summary
===================================
Generated: {{ generated }}
Subscription: {{ subscription }}

Report Files:
- Orphaned Resources: {{ total }}
- Empty Resource Groups: {{ counts['Empty Resource Group'] }}
- Stopped VMs: {{ counts['Stopped VM'] }}
- Storage Accounts Analyzed: {{ storage_total }}{{ ' (%d flagged)' % storage_flagged if storage_flagged else '' }}
- Orphaned Snapshots: {{ counts['Orphaned Snapshot'] }}

High Priority Items:
{% for finding in high %}
- {{ finding.identity.name }} ({{ finding.category.value }}, {{ finding.cost_impact.value }})
{% else %}
- (none)
{% endfor %}
{% if warnings %}

Detection Warnings:
{% for warning in warnings %}
- {{ warning }}
{% endfor %}
{% endif %}

Recommendations:
1. Review high-impact orphaned resources first
2. Verify stopped VMs are not needed before deletion
3. Check empty resource groups for hidden dependencies
4. Test storage account access before cleanup
5. Use safety tags before deletion operations
"""

ACTIVITY_SUMMARY_TEMPLATE = """Activity Log Analysis Summary
=============================
Generated: {{ generated }}
Subscription: {{ subscription }}
Analysis Period: {{ days_back }} days

Activity Statistics:
- Total Events: {{ statistics['total'] }}
- Creation Events: {{ statistics['creations'] }}
- Modification Events: {{ statistics['modifications'] }}
- Deletion Events: {{ statistics['deletions'] }}
- Unique Callers: {{ statistics['callers'] }}

Top Resource Creators:
{% for creator in creators %}
- {{ creator.creator }} ({{ creator.total_actions }} total actions, {{ creator.creation_actions }} creations)
{% else %}
- No callers found
{% endfor %}

Recent Deletions:
{% for deletion in deletions %}
- {{ deletion.resource_name }} deleted by {{ deletion.deleted_by }} on {{ deletion.deletion_time.strftime('%Y-%m-%d %H:%M:%S') }}
{% else %}
- No recent deletions found
{% endfor %}

Data Quality Notes:
- Activity log retention: 90 days
{% if inferred %}
- Creation events inferred from resource metadata; the activity log was empty or unavailable
{% endif %}
- Modify operations may include routine maintenance
- Service principal activities included

Report Files Generated:
{% for file in files %}
- {{ file.name }} ({{ file.record_count }} records)
{% endfor %}
"""

GOVERNANCE_TEMPLATE = """Resource Governance Recommendations
===================================
Generated: {{ generated }}
Based on analysis of {{ total }} resources

TAGGING COMPLIANCE ISSUES
=========================
1. Missing Creator Information: {{ creator.count }} resources ({{ creator.percent }}%)
   - Recommendation: Implement mandatory CreatedBy or Owner tags
   - Impact: Cannot identify resource ownership for cost allocation

2. Missing Environment Tags: {{ environment.count }} resources ({{ environment.percent }}%)
   - Recommendation: Implement mandatory Environment tags (dev/test/prod)
   - Impact: Cannot apply environment-specific policies

3. Missing Project Tags: {{ project.count }} resources ({{ project.percent }}%)
   - Recommendation: Implement mandatory Project or Application tags
   - Impact: Cannot track costs by project or application

RECOMMENDED ACTIONS
===================
1. Create Azure Policy to enforce mandatory tags
2. Implement automated tagging via Azure Resource Manager templates
3. Set up regular tagging compliance reports
4. Train teams on proper resource tagging standards
5. Consider using Azure Resource Graph queries for ongoing monitoring

OLD RESOURCES REVIEW
====================
Resources over 1 year old: {{ old_count }}
- Recommendation: Review for continued business need
- Consider implementing lifecycle management policies
- Evaluate for cost optimization opportunities
"""


def generated_stamp(now: Optional[datetime] = None) -> str:
    """Report timestamps are always UTC"""
    return (now or utc_now()).astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def render_run_summary(summary: AuditSummary, generated: Optional[str] = None) -> str:
    """Summary of every stage and every file written during a run"""
    files = [
        {'name': Path(report.path).name, 'record_count': report.record_count}
        for report in summary.files
    ]
    subscription = summary.subscription_id
    if summary.subscription_name and summary.subscription_name != summary.subscription_id:
        subscription = f"{summary.subscription_name} ({summary.subscription_id})"

    return Template(RUN_SUMMARY_TEMPLATE, trim_blocks=True, lstrip_blocks=True).render(
        generated=generated or generated_stamp(),
        summary=summary,
        subscription=subscription,
        resource_groups=", ".join(summary.resource_groups) or "All",
        files=files,
    )


def render_cleanup_summary(
    recommendations: Sequence[Recommendation],
    subscription_id: str,
    files: Iterable[ReportFile] = (),
    dry_run: bool = False,
    tagging_applied: bool = False,
    tagged_count: int = 0,
    generated: Optional[str] = None,
    top_count: int = 5,
) -> str:
    priorities = Counter(rec.priority for rec in recommendations)
    types = Counter(rec.recommendation_type.value for rec in recommendations)
    unverified: List[Recommendation] = [rec for rec in recommendations if not rec.verified]

    return Template(CLEANUP_SUMMARY_TEMPLATE, trim_blocks=True, lstrip_blocks=True).render(
        generated=generated or generated_stamp(),
        subscription_id=subscription_id,
        total=len(recommendations),
        priorities={p: priorities.get(p, 0) for p in (1, 2, 3)},
        types={t.value: types.get(t.value, 0) for t in RecommendationType},
        dry_run=dry_run,
        tagging_applied=tagging_applied,
        tagged_count=tagged_count,
        top=list(recommendations[:top_count]),
        unverified=unverified,
        file_names=[Path(report.path).name for report in files],
    )


def render_orphan_summary(
    findings: Sequence[OrphanFinding],
    subscription: str,
    storage_reviews: Sequence[StorageAccountReview] = (),
    warnings: Sequence[str] = (),
    generated: Optional[str] = None,
    top_count: int = 5,
) -> str:
    counts = Counter(finding.category.value for finding in findings)
    high = [finding for finding in findings if finding.cost_impact == CostImpact.HIGH]

    return Template(ORPHAN_SUMMARY_TEMPLATE, trim_blocks=True, lstrip_blocks=True).render(
        generated=generated or generated_stamp(),
        subscription=subscription,
        total=len(findings),
        counts={category.value: counts.get(category.value, 0) for category in OrphanCategory},
        storage_total=len(storage_reviews),
        storage_flagged=sum(1 for review in storage_reviews if review.is_suspicious),
        high=high[:top_count],
        warnings=list(warnings),
    )


def render_activity_summary(
    subscription: str,
    days_back: int,
    statistics: Mapping[str, int],
    creators: Sequence[CreatorSummary],
    deletions: Sequence[DeletionRecord],
    files: Iterable[ReportFile] = (),
    inferred: bool = False,
    generated: Optional[str] = None,
    top_count: int = 5,
) -> str:
    """Event counts, top creators and the most recent deletions"""
    return Template(ACTIVITY_SUMMARY_TEMPLATE, trim_blocks=True, lstrip_blocks=True).render(
        generated=generated or generated_stamp(),
        subscription=subscription,
        days_back=days_back,
        statistics=statistics,
        creators=list(creators[:top_count]),
        deletions=list(deletions[:top_count]),
        inferred=inferred,
        files=[
            {'name': Path(report.path).name, 'record_count': report.record_count}
            for report in files
        ],
    )


def _share(count: int, total: int) -> dict:
    return {'count': count, 'percent': count * 100 // total if total else 0}


def render_governance_report(ownership: Sequence[ResourceOwnership], generated: Optional[str] = None) -> str:
    """Tagging compliance and old-resource review over the ownership view

    Percentages are whole numbers rounded down; an empty scope reports 0%.
    """
    total = len(ownership)
    missing_creator = sum(1 for o in ownership if not o.created_by or o.created_by == UNKNOWN)
    missing_environment = sum(1 for o in ownership if not o.environment)
    missing_project = sum(1 for o in ownership if not o.project)

    return Template(GOVERNANCE_TEMPLATE, trim_blocks=True, lstrip_blocks=True).render(
        generated=generated or generated_stamp(),
        total=total,
        creator=_share(missing_creator, total),
        environment=_share(missing_environment, total),
        project=_share(missing_project, total),
        old_count=sum(1 for o in ownership if o.age_category == OLD_AGE_CATEGORY),
    )
