"""
Audit Trail

Append-only anomaly and reconciliation-pass records for review and dispute.
"""
from .recorder import AuditRecorder

__all__ = ["AuditRecorder"]
