"""Exceptions raised by bcditrad."""


class BcdiError(Exception):
    """
    Base class for bcditrad errors.

    `operator` names the operator that was being applied when the error was
    raised, or is None if the error did not come from an operator.
    """
    def __init__(self, message: str, operator: str | None = None):
        super().__init__(message)
        self.operator = operator

    def __str__(self):
        message = super().__str__()
        if self.operator is not None:
            return f"[{self.operator}] {message}"
        return message


class DimensionMismatch(BcdiError, ValueError):
    """Shapes of intensities, masks, fields or operator buffers disagree."""


class InvalidArgument(BcdiError, ValueError):
    """An argument is outside its valid domain (negative intensities, sigma <= 0, empty support...)."""


class EngineFailure(BcdiError, RuntimeError):
    """The Fourier/loss engine or the line search failed."""
