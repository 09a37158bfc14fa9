"""
Tests for EngineConfig loading and validation.

Test Coverage:
1. Defaults match the documented rates and policy table
2. INTEGRITY_* environment overrides
3. Invalid configuration stops the engine at load time
4. Platform fallback can be disabled
"""
import json
from decimal import Decimal

import pytest

from usage_integrity.config import EngineConfig
from usage_integrity.errors import ConfigurationError
from usage_integrity.models.ssot import DeclarationType


class TestDefaults:

    def test_rates(self):
        config = EngineConfig()
        assert config.idle_rate_mpd == 25.0
        assert config.trip_rate_mpd == 150.0
        assert config.tolerance_miles == 50
        assert config.compliance_window_months == 3
        assert config.platform_policy.deductible == Decimal("1000.00")

    @pytest.mark.parametrize("declaration,normal,critical", [
        (DeclarationType.RENTAL_ONLY, 15, 50),
        (DeclarationType.RENTAL_PLUS_PERSONAL, 500, 1000),
        (DeclarationType.BUSINESS, 300, 600),
    ])
    def test_policy_table(self, declaration, normal, critical):
        policy = EngineConfig().policy_for(declaration)
        assert policy.max_normal_gap_miles == normal
        assert policy.critical_gap_miles == critical
        assert policy.violation_gap_miles == 2 * critical

    def test_constants_snapshot(self):
        assert EngineConfig().constants_snapshot()["idle_rate_mpd"] == 25.0


class TestFromEnv:

    def test_empty_environment_gives_defaults(self):
        assert EngineConfig.from_env({}) == EngineConfig()

    def test_numeric_overrides(self):
        config = EngineConfig.from_env({
            "INTEGRITY_IDLE_RATE_MPD": "30",
            "INTEGRITY_TRIP_RATE_MPD": "200",
            "INTEGRITY_TOLERANCE_MILES": "75",
            "INTEGRITY_SERVICE_INTERVAL_DAYS": "90",
        })
        assert config.idle_rate_mpd == 30.0
        assert config.trip_rate_mpd == 200.0
        assert config.tolerance_miles == 75
        assert config.service_interval_days == 90

    def test_policy_overrides(self):
        overrides = {"RENTAL_ONLY": {"max_normal_gap_miles": 20, "critical_gap_miles": 60}}
        config = EngineConfig.from_env({"INTEGRITY_DECLARATION_POLICIES": json.dumps(overrides)})

        policy = config.policy_for(DeclarationType.RENTAL_ONLY)
        assert (policy.max_normal_gap_miles, policy.critical_gap_miles) == (20, 60)
        assert config.policy_for(DeclarationType.BUSINESS).max_normal_gap_miles == 300

    def test_platform_deductible_override(self):
        config = EngineConfig.from_env({"INTEGRITY_PLATFORM_DEDUCTIBLE": "2500"})
        assert config.platform_policy.deductible == Decimal("2500")

    @pytest.mark.parametrize("raw", ["none", "None", "disabled", ""])
    def test_platform_fallback_disabled(self, raw):
        assert EngineConfig.from_env({"INTEGRITY_PLATFORM_DEDUCTIBLE": raw}).platform_policy is None


class TestValidation:

    @pytest.mark.parametrize("env", [
        {"INTEGRITY_IDLE_RATE_MPD": "fast"},
        {"INTEGRITY_TOLERANCE_MILES": "-5"},
        {"INTEGRITY_TRIP_RATE_MPD": "0"},
        {"INTEGRITY_PLATFORM_DEDUCTIBLE": "lots"},
        {"INTEGRITY_PLATFORM_DEDUCTIBLE": "-100"},
        {"INTEGRITY_DECLARATION_POLICIES": "{not json"},
        {"INTEGRITY_DECLARATION_POLICIES": "[1, 2]"},
        {"INTEGRITY_DECLARATION_POLICIES": '{"LEISURE": {"max_normal_gap_miles": 5}}'},
        {"INTEGRITY_DECLARATION_POLICIES": '{"RENTAL_ONLY": {"max_normal_gap_miles": 80}}'},
        {"INTEGRITY_DECLARATION_POLICIES": '{"RENTAL_ONLY": {"color": "red"}}'},
        {"INTEGRITY_DECLARATION_POLICIES": '{"RENTAL_ONLY": {"max_normal_gap_miles": "abc"}}'},
        {"INTEGRITY_DECLARATION_POLICIES": '{"RENTAL_ONLY": {"critical_gap_miles": null}}'},
        {"INTEGRITY_DECLARATION_POLICIES": '{"RENTAL_ONLY": 20}'},
    ])
    def test_invalid_configuration_is_refused(self, env):
        with pytest.raises(ConfigurationError):
            EngineConfig.from_env(env)

    def test_negative_idle_rate(self):
        with pytest.raises(ConfigurationError):
            EngineConfig(idle_rate_mpd=-1)

    def test_incomplete_policy_table(self):
        table = dict(EngineConfig().declaration_policies)
        del table[DeclarationType.BUSINESS]
        with pytest.raises(ConfigurationError):
            EngineConfig(declaration_policies=table)
