"""Vehicle Usage Integrity Engine - Data Models"""
from .ssot import (
    # Enums
    DeclarationType, AnomalySeverity, AnomalyCause, ServiceType, InsuranceLevel,
    CoverageLevel, CoverageType,
    # Policy tables
    DeclarationPolicy, EarningsTier,
    # Reconciliation
    Anchor, TripSnapshot, ReconstructedTrip, TimelineResult, AnomalyFinding,
    # Compliance
    ForensicSummary, ServiceMetrics, ComplianceAdvice,
    # Claims
    GuestInsuranceFacts, HostInsuranceFacts, PlatformPolicy,
    InsuranceCoverageLayer, ClaimBreakdown,
)

__all__ = [
    "DeclarationType", "AnomalySeverity", "AnomalyCause", "ServiceType", "InsuranceLevel",
    "CoverageLevel", "CoverageType",
    "DeclarationPolicy", "EarningsTier",
    "Anchor", "TripSnapshot", "ReconstructedTrip", "TimelineResult", "AnomalyFinding",
    "ForensicSummary", "ServiceMetrics", "ComplianceAdvice",
    "GuestInsuranceFacts", "HostInsuranceFacts", "PlatformPolicy",
    "InsuranceCoverageLayer", "ClaimBreakdown",
]
