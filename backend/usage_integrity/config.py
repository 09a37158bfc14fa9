"""
Vehicle Usage Integrity Engine - Configuration

Rate constants, tolerance and the declaration policy table are carried in
one explicit EngineConfig object handed to every service at construction.
Validation happens when the object is built: a bad configuration stops the
engine from starting instead of silently falling back to defaults.

Environment variables (all optional):
    INTEGRITY_IDLE_RATE_MPD            host miles per idle day (default 25)
    INTEGRITY_TRIP_RATE_MPD            guest miles per rental day (default 150)
    INTEGRITY_TOLERANCE_MILES          slack under the idle estimate (default 50)
    INTEGRITY_MAX_PLAUSIBLE_TRIP_MPD   recorded miles/day treated as impossible (default 1000)
    INTEGRITY_COMPLIANCE_WINDOW_MONTHS trailing window for the advisor (default 3)
    INTEGRITY_SERVICE_INTERVAL_DAYS    days between services before overdue (default 180)
    INTEGRITY_LOCK_TTL_SECONDS         advisory lock expiry (default 900)
    INTEGRITY_PLATFORM_DEDUCTIBLE      platform fallback deductible; "none" disables it
    INTEGRITY_DECLARATION_POLICIES     JSON overrides for the policy table
"""
import json
import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from typing import Dict, Optional

from .errors import ConfigurationError
from .models.ssot import DeclarationPolicy, DeclarationType, PlatformPolicy
from .services.policy.declarations import (
    DEFAULT_DECLARATION_POLICIES,
    build_policy_table,
    validate_policy_table,
)


DEFAULT_PLATFORM_POLICY = PlatformPolicy(
    deductible=Decimal("1000.00"),
    description="Platform protection plan (fallback liability coverage)",
)


@dataclass(frozen=True)
class EngineConfig:
    """Per-fleet tuning for reconciliation, classification and claims."""
    idle_rate_mpd: float = 25.0
    trip_rate_mpd: float = 150.0
    tolerance_miles: int = 50
    max_plausible_trip_mpd: float = 1000.0
    compliance_window_months: int = 3
    service_interval_days: int = 180
    lock_ttl_seconds: int = 900
    platform_policy: Optional[PlatformPolicy] = DEFAULT_PLATFORM_POLICY
    declaration_policies: Dict[DeclarationType, DeclarationPolicy] = field(
        default_factory=lambda: dict(DEFAULT_DECLARATION_POLICIES)
    )

    def __post_init__(self):
        if self.idle_rate_mpd < 0:
            raise ConfigurationError(f"idle_rate_mpd must be >= 0, got {self.idle_rate_mpd}")
        if self.trip_rate_mpd <= 0:
            raise ConfigurationError(f"trip_rate_mpd must be > 0, got {self.trip_rate_mpd}")
        if self.tolerance_miles < 0:
            raise ConfigurationError(f"tolerance_miles must be >= 0, got {self.tolerance_miles}")
        if self.max_plausible_trip_mpd < self.trip_rate_mpd:
            raise ConfigurationError(
                f"max_plausible_trip_mpd ({self.max_plausible_trip_mpd}) is below "
                f"trip_rate_mpd ({self.trip_rate_mpd})"
            )
        if self.compliance_window_months < 1:
            raise ConfigurationError("compliance_window_months must be >= 1")
        if self.service_interval_days < 1:
            raise ConfigurationError("service_interval_days must be >= 1")
        if self.lock_ttl_seconds < 1:
            raise ConfigurationError("lock_ttl_seconds must be >= 1")
        if self.platform_policy is not None and self.platform_policy.deductible < 0:
            raise ConfigurationError("platform deductible must be >= 0")
        validate_policy_table(self.declaration_policies)

    def policy_for(self, declaration: DeclarationType) -> DeclarationPolicy:
        try:
            return self.declaration_policies[DeclarationType(declaration)]
        except (KeyError, ValueError):
            raise ConfigurationError(f"No policy configured for declaration {declaration!r}")

    def constants_snapshot(self) -> Dict[str, float]:
        """Constants recorded on every reconciliation pass."""
        return {
            "idle_rate_mpd": self.idle_rate_mpd,
            "trip_rate_mpd": self.trip_rate_mpd,
            "tolerance_miles": self.tolerance_miles,
            "max_plausible_trip_mpd": self.max_plausible_trip_mpd,
        }

    @classmethod
    def from_env(cls, environ=None) -> "EngineConfig":
        """Build and validate a config from INTEGRITY_* environment variables."""
        env = os.environ if environ is None else environ
        defaults = cls()

        def number(name, default, cast):
            raw = env.get(name)
            if raw is None or raw == "":
                return default
            try:
                return cast(raw)
            except ValueError:
                raise ConfigurationError(f"{name} is not a valid number: {raw!r}")

        platform_policy = defaults.platform_policy
        raw_deductible = env.get("INTEGRITY_PLATFORM_DEDUCTIBLE")
        if raw_deductible is not None:
            if raw_deductible.strip().lower() in ("", "none", "disabled"):
                platform_policy = None
            else:
                try:
                    platform_policy = PlatformPolicy(
                        deductible=Decimal(raw_deductible),
                        description=DEFAULT_PLATFORM_POLICY.description,
                    )
                except InvalidOperation:
                    raise ConfigurationError(
                        f"INTEGRITY_PLATFORM_DEDUCTIBLE is not a valid amount: {raw_deductible!r}"
                    )

        overrides = None
        raw_policies = env.get("INTEGRITY_DECLARATION_POLICIES")
        if raw_policies:
            try:
                overrides = json.loads(raw_policies)
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"INTEGRITY_DECLARATION_POLICIES is not valid JSON: {e}")
            if not isinstance(overrides, dict):
                raise ConfigurationError("INTEGRITY_DECLARATION_POLICIES must be a JSON object")

        return cls(
            idle_rate_mpd=number("INTEGRITY_IDLE_RATE_MPD", defaults.idle_rate_mpd, float),
            trip_rate_mpd=number("INTEGRITY_TRIP_RATE_MPD", defaults.trip_rate_mpd, float),
            tolerance_miles=number("INTEGRITY_TOLERANCE_MILES", defaults.tolerance_miles, int),
            max_plausible_trip_mpd=number(
                "INTEGRITY_MAX_PLAUSIBLE_TRIP_MPD", defaults.max_plausible_trip_mpd, float
            ),
            compliance_window_months=number(
                "INTEGRITY_COMPLIANCE_WINDOW_MONTHS", defaults.compliance_window_months, int
            ),
            service_interval_days=number(
                "INTEGRITY_SERVICE_INTERVAL_DAYS", defaults.service_interval_days, int
            ),
            lock_ttl_seconds=number("INTEGRITY_LOCK_TTL_SECONDS", defaults.lock_ttl_seconds, int),
            platform_policy=platform_policy,
            declaration_policies=build_policy_table(overrides),
        )


@lru_cache(maxsize=1)
def get_config() -> EngineConfig:
    """Dependency for FastAPI - the process-wide config, loaded once."""
    return EngineConfig.from_env()
