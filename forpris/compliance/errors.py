"""Exceptions raised by the compliance engine."""


class ComplianceError(Exception):
    """Base class for compliance engine errors."""


class InvalidInputError(ComplianceError, ValueError):
    """Input violates the engine's preconditions (e.g. non-positive price)."""


class UnsortedHistoryError(InvalidInputError):
    """Observation history is not in ascending timestamp order."""


class RuleConfigurationError(ComplianceError):
    """A rule definition cannot be run (unknown type or malformed parameters)."""
