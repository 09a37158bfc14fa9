"""
Declaration Policy Table

Static mapping from a host's declared usage category to the gap thresholds
the Anomaly Classifier applies, plus the text shown to hosts and claim
reviewers. The numeric defaults are fleet-tunable through EngineConfig.

A policy is looked up at evaluation time and its values are copied onto each
anomaly record, so a later declaration change never reinterprets history.
"""
from typing import Dict, Mapping

from ...errors import ConfigurationError
from ...models.ssot import DeclarationPolicy, DeclarationType


# =============================================================================
# DEFAULT POLICY TABLE
# =============================================================================

DEFAULT_DECLARATION_POLICIES: Dict[DeclarationType, DeclarationPolicy] = {
    DeclarationType.RENTAL_ONLY: DeclarationPolicy(
        declaration=DeclarationType.RENTAL_ONLY,
        max_normal_gap_miles=15,
        critical_gap_miles=50,
        label="Rental Only",
        description="Vehicle is used exclusively for platform rentals. "
                    "Only repositioning miles are expected between trips.",
        claim_impact="Unexplained mileage between trips contradicts the rental-only "
                     "declaration and may cause the claim to be denied.",
    ),
    DeclarationType.RENTAL_PLUS_PERSONAL: DeclarationPolicy(
        declaration=DeclarationType.RENTAL_PLUS_PERSONAL,
        max_normal_gap_miles=500,
        critical_gap_miles=1000,
        label="Rental + Personal",
        description="Vehicle is rented on the platform and also driven personally by the host.",
        claim_impact="Personal use is expected; only extreme gaps affect claim review.",
    ),
    DeclarationType.BUSINESS: DeclarationPolicy(
        declaration=DeclarationType.BUSINESS,
        max_normal_gap_miles=300,
        critical_gap_miles=600,
        label="Business",
        description="Vehicle is part of a commercial fleet with business use between rentals.",
        claim_impact="Business mileage above the declared pattern triggers commercial "
                     "coverage review before payout.",
    ),
}


def _miles(name, values, field, default) -> int:
    raw = values.get(field, default)
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name}.{field} is not a valid number: {raw!r}")


def build_policy_table(overrides: Mapping[str, Mapping[str, object]] = None) -> Dict[DeclarationType, DeclarationPolicy]:
    """
    Build a policy table from the defaults plus per-fleet overrides.

    Overrides are keyed by declaration name, e.g.
    {"RENTAL_ONLY": {"max_normal_gap_miles": 20, "critical_gap_miles": 60}}.
    Unknown declaration names or fields are configuration errors.
    """
    table = dict(DEFAULT_DECLARATION_POLICIES)
    for name, values in (overrides or {}).items():
        try:
            declaration = DeclarationType(name)
        except ValueError:
            raise ConfigurationError(f"Unknown declaration type in policy table: {name!r}")
        if not isinstance(values, Mapping):
            raise ConfigurationError(f"Policy override for {name} must be an object, got {values!r}")

        base = table[declaration]
        unknown = set(values) - {"max_normal_gap_miles", "critical_gap_miles", "label", "description", "claim_impact"}
        if unknown:
            raise ConfigurationError(f"Unknown policy fields for {name}: {sorted(unknown)}")

        table[declaration] = DeclarationPolicy(
            declaration=declaration,
            max_normal_gap_miles=_miles(name, values, "max_normal_gap_miles", base.max_normal_gap_miles),
            critical_gap_miles=_miles(name, values, "critical_gap_miles", base.critical_gap_miles),
            label=str(values.get("label", base.label)),
            description=str(values.get("description", base.description)),
            claim_impact=str(values.get("claim_impact", base.claim_impact)),
        )
    return table


def validate_policy_table(table: Mapping) -> None:
    """Refuse to run with an incomplete or inconsistent policy table."""
    for key, policy in table.items():
        if not isinstance(key, DeclarationType):
            raise ConfigurationError(f"Unknown declaration type in policy table: {key!r}")
        if policy.declaration != key:
            raise ConfigurationError(f"Policy for {key.value} is declared as {policy.declaration.value}")
        if policy.max_normal_gap_miles < 0:
            raise ConfigurationError(f"{key.value}: max_normal_gap_miles must be >= 0")
        if policy.critical_gap_miles < policy.max_normal_gap_miles:
            raise ConfigurationError(
                f"{key.value}: critical_gap_miles ({policy.critical_gap_miles}) is below "
                f"max_normal_gap_miles ({policy.max_normal_gap_miles})"
            )

    missing = [d.value for d in DeclarationType if d not in table]
    if missing:
        raise ConfigurationError(f"Policy table is missing declarations: {missing}")
