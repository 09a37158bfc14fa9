"""
Policy Tables

Declaration thresholds and earnings tiers. Both are static tables;
only the declaration table is tunable per fleet.
"""
from .declarations import DEFAULT_DECLARATION_POLICIES, build_policy_table, validate_policy_table
from .earnings import EARNINGS_TIERS, earnings_tier_for

__all__ = [
    "DEFAULT_DECLARATION_POLICIES",
    "build_policy_table",
    "validate_policy_table",
    "EARNINGS_TIERS",
    "earnings_tier_for",
]
