from __future__ import annotations

from typing import Any, Dict, Optional


class TesseraException(Exception):
    """
    Base exception for the authorization engine.

    Routers rely on:
    - attributes: message/code/status_code/details/user_message
    - method: to_dict()
    """

    def __init__(
        self,
        message: str,
        *,
        code: str = "TESSERA_ERROR",
        status_code: int = 400,
        details: Optional[Dict[str, Any]] = None,
        user_message: Optional[str] = None,
    ) -> None:
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details: Dict[str, Any] = details or {}
        self.user_message = user_message or message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "user_message": self.user_message,
            "details": self.details,
        }

    def __str__(self) -> str:  # pragma: no cover
        return self.message


class NotFoundError(TesseraException):
    def __init__(self, entity: str, identifier: Any, **kwargs: Any):
        message = f"{entity} not found: {identifier}"
        details: Dict[str, Any] = {"entity": entity, "identifier": identifier}
        details.update(kwargs)
        super().__init__(
            message=message,
            code="NOT_FOUND",
            status_code=404,
            details=details,
            user_message=f"{entity} not found",
        )


class UnauthenticatedError(TesseraException):
    def __init__(self, message: str = "Authentication required", **kwargs: Any):
        super().__init__(
            message=message,
            code="UNAUTHENTICATED",
            status_code=401,
            details=dict(kwargs),
            user_message="Authentication required",
        )


class ForbiddenError(TesseraException):
    """
    Raised when an authenticated actor lacks a permission or fails every
    policy. Details only ever name the permission that was required.
    """

    def __init__(self, permission: str, **kwargs: Any):
        details: Dict[str, Any] = {"required_permission": permission}
        details.update(kwargs)
        super().__init__(
            message=f"Permission denied: {permission}",
            code="FORBIDDEN",
            status_code=403,
            details=details,
            user_message="You do not have the required permission(s) to access this resource",
        )


class MisconfiguredError(TesseraException):
    def __init__(self, message: str, **kwargs: Any):
        super().__init__(
            message=message,
            code="MISCONFIGURED",
            status_code=422,
            details=dict(kwargs),
            user_message=f"Invalid authorization configuration: {message}",
        )


class ValidationError(TesseraException):
    def __init__(self, message: str, field: Optional[str] = None, **kwargs: Any):
        details: Dict[str, Any] = {"field": field} if field else {}
        details.update(kwargs)
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            status_code=422,
            details=details,
            user_message=f"Validation failed: {message}",
        )


class ConfigurationError(TesseraException):
    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs: Any):
        details: Dict[str, Any] = {"config_key": config_key} if config_key else {}
        details.update(kwargs)
        super().__init__(
            message=message,
            code="CONFIGURATION_ERROR",
            status_code=500,
            details=details,
            user_message="System configuration error",
        )
