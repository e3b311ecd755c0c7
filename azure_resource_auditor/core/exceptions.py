"""Error taxonomy for the audit pipeline"""


class AuditError(Exception):
    """Base error for the audit pipeline"""
    exit_code = 1


class ValidationError(AuditError, ValueError):
    """Invalid input detected before any network call"""
    exit_code = 3


class AuthorizationError(AuditError):
    """Authentication failed or the caller cannot access the requested scope"""
    exit_code = 2


class MissingToolError(AuditError):
    """A required external executable is not installed"""
    exit_code = 4


class InventoryFetchError(AuditError):
    """Resource inventory could not be collected"""
    exit_code = 1
