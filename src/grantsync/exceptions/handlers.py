from __future__ import annotations

from typing import Any, Dict, List, Optional


class GrantSyncException(Exception):
    """
    Base exception for the grant engine.

    Carries message/code/status_code/details/user_message so HTTP and CLI
    surfaces can render it without knowing the concrete subclass.
    """

    def __init__(
        self,
        message: str,
        *,
        code: str = "GRANTSYNC_ERROR",
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


class ValidationError(GrantSyncException):
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


class ConfigurationError(GrantSyncException):
    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        errors: Optional[List[str]] = None,
        **kwargs: Any,
    ):
        details: Dict[str, Any] = {"config_key": config_key} if config_key else {}
        if errors:
            details["errors"] = list(errors)
        details.update(kwargs)
        super().__init__(
            message=message,
            code="CONFIGURATION_ERROR",
            status_code=500,
            details=details,
            user_message="System configuration error",
        )


class RebuildError(GrantSyncException):
    def __init__(self, message: str, **kwargs: Any):
        super().__init__(
            message=message,
            code="ACL_REBUILD_FAILED",
            status_code=503,
            details=dict(kwargs),
            user_message="Permission registry is unavailable",
        )


class RegistryNotReadyError(GrantSyncException):
    def __init__(self) -> None:
        super().__init__(
            message="Permission registry has not completed its initial rebuild",
            code="ACL_NOT_READY",
            status_code=503,
            user_message="Permission registry is unavailable",
        )
