"""Azure Resource Auditor: inventory, cost, orphan and activity audits with cleanup recommendations"""

__version__ = "2.0.0"
