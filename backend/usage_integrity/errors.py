"""
Vehicle Usage Integrity Engine - Domain Errors

Missing mileage data is never an error. These cover configuration,
immutability guards and claim-time liability gaps only.
"""


class IntegrityEngineError(Exception):
    """Base class for engine errors."""


class ConfigurationError(IntegrityEngineError):
    """Policy or rate configuration is invalid. Raised at load time, never per record."""


class ImmutableRecordError(IntegrityEngineError):
    """An append-only record (anomaly, pass, payout, raw reading) was about to be rewritten."""


class DeclarationLockedError(IntegrityEngineError):
    """Declaration changes are blocked while a claim on the vehicle is open."""


class InsufficientCoverageDataError(IntegrityEngineError):
    """No coverage layer can be built for a claim, not even the platform fallback."""


class NotFoundError(IntegrityEngineError):
    """Referenced vehicle, trip, booking or anomaly does not exist."""


class InvalidClaimStateError(IntegrityEngineError):
    """Claim transition not allowed from its current status (e.g. approving a decided claim)."""
