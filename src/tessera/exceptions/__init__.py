from tessera.exceptions.handlers import (
    ConfigurationError,
    ForbiddenError,
    MisconfiguredError,
    NotFoundError,
    TesseraException,
    UnauthenticatedError,
    ValidationError,
)

__all__ = [
    "TesseraException",
    "NotFoundError",
    "UnauthenticatedError",
    "ForbiddenError",
    "MisconfiguredError",
    "ValidationError",
    "ConfigurationError",
]
