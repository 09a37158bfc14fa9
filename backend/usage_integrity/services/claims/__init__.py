"""
Claims

Coverage stacking, claim filing and the immutable payout ledger.
"""
from .coverage_stacker import InsuranceCoverageStacker, to_money
from .claim_service import ClaimService, REVIEW_SEVERITIES

__all__ = [
    "InsuranceCoverageStacker",
    "to_money",
    "ClaimService",
    "REVIEW_SEVERITIES",
]
