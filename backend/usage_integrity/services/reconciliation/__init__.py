"""
Mileage Reconciliation

Anchor resolution, timeline reconstruction, anomaly classification and the
pass orchestration that ties them together.
"""
from .anchor_resolver import AnchorResolver
from .timeline import reconstruct_timeline, round_miles, days_between
from .anomaly_classifier import AnomalyClassifier, classify_gap
from .locks import VehicleLockManager
from .reconciliation_service import ReconciliationService, ReconciliationOutcome
from .fleet_sweep import FleetSweep

__all__ = [
    "AnchorResolver",
    "reconstruct_timeline",
    "round_miles",
    "days_between",
    "AnomalyClassifier",
    "classify_gap",
    "VehicleLockManager",
    "ReconciliationService",
    "ReconciliationOutcome",
    "FleetSweep",
]
