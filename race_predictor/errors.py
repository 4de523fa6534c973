"""Error taxonomy and the structured validation result returned at the boundary."""

from dataclasses import dataclass, field

from pydantic import ValidationError


class RacePredictorError(Exception):
    """Base class for all predictor errors."""


class InvalidOddsFormat(RacePredictorError, ValueError):
    """Odds text could not be parsed into a positive quote."""


class InvalidRoundComposition(RacePredictorError, ValueError):
    """Wrong candidate count, duplicate ids, or finishers not in the round."""


class CorruptPersistedState(RacePredictorError):
    """Stored blob is unparseable or was written by another schema version."""


class OutOfRangeBet(RacePredictorError, ValueError):
    """Stake outside the allowed bounds."""


class UnknownStrategy(RacePredictorError, ValueError):
    """Strategy name that matches no profile."""


@dataclass
class ValidationResult:
    """Outcome of validating user input. Never raised, always returned."""

    is_valid: bool = True
    errors: list[str] = field(default_factory=list)

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(is_valid=True, errors=[])

    @classmethod
    def failed(cls, *errors: str) -> "ValidationResult":
        return cls(is_valid=False, errors=list(errors))

    @classmethod
    def from_exception(cls, exc: Exception) -> "ValidationResult":
        """Convert a validation exception into a failed result.

        Pydantic errors are flattened to one message per field.
        """
        if isinstance(exc, ValidationError):
            messages = []
            for err in exc.errors():
                loc = ".".join(str(part) for part in err.get("loc", ()))
                msg = err.get("msg", "invalid value")
                messages.append(f"{loc}: {msg}" if loc else msg)
            return cls.failed(*messages)
        return cls.failed(str(exc))

    def merge(self, other: "ValidationResult") -> "ValidationResult":
        return ValidationResult(
            is_valid=self.is_valid and other.is_valid,
            errors=[*self.errors, *other.errors],
        )
