"""
Declaration Compliance

Declaration history and host-facing compliance guidance.
"""
from .declaration_service import DeclarationService, DEFAULT_DECLARATION
from .advisor import ComplianceAdvisor, SEVERITY_PENALTIES

__all__ = [
    "DeclarationService",
    "DEFAULT_DECLARATION",
    "ComplianceAdvisor",
    "SEVERITY_PENALTIES",
]
