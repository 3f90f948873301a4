"""Exceptions raised by methsim."""


class MethsimError(Exception):
    """Base exception for all methsim errors."""

    pass


class ValidationError(MethsimError, ValueError):
    """Raised when caller-supplied arrays or parameters are invalid."""

    pass


class ShapeMismatchError(ValidationError):
    """Raised when parallel arrays disagree in length or a matrix has the wrong shape."""

    pass


class ReadBoundsError(ValidationError, IndexError):
    """Raised when a read window or haplotype index falls outside the state matrix."""

    pass


class DomainError(ValidationError):
    """Raised when a value lies outside its allowed domain."""

    pass
