from typing import Optional, Any


class GatewayError(Exception):
    """
    Base exception for the gateway application.
    """
    def __init__(self, message: str, code: str = "INTERNAL_ERROR", status_code: int = 500, details: Optional[Any] = None):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details
        super().__init__(self.message)


class InvalidArgumentError(GatewayError):
    """
    Raised when a request field is missing or malformed.
    """
    def __init__(self, message: str = "Invalid argument", details: Optional[Any] = None):
        super().__init__(message, code="INVALID_ARGUMENT", status_code=400, details=details)


class NotFoundError(GatewayError):
    """
    Raised when an instance or chat cannot be found.
    """
    def __init__(self, message: str = "Resource not found", details: Optional[Any] = None):
        super().__init__(message, code="NOT_FOUND", status_code=404, details=details)


class ConflictError(GatewayError):
    """
    Raised when an instance id is already registered.
    """
    def __init__(self, message: str = "Instance already exists", details: Optional[Any] = None):
        super().__init__(message, code="CONFLICT", status_code=400, details=details)


class NotReadyError(GatewayError):
    """
    Raised when an operation needs a ready session and the session is not ready.
    """
    def __init__(self, message: str = "WhatsApp client is not ready", details: Optional[Any] = None):
        super().__init__(message, code="NOT_READY", status_code=500, details=details)


class NotAGroupError(GatewayError):
    """
    Raised when a group operation targets a chat that is not a group.
    """
    def __init__(self, message: str = "Chat is not a group", details: Optional[Any] = None):
        super().__init__(message, code="NOT_A_GROUP", status_code=400, details=details)


class ProviderError(GatewayError):
    """
    Raised when the session provider fails an operation.
    Subclasses name the operation that failed.
    """
    code = "PROVIDER_ERROR"

    def __init__(self, message: str = "Session provider error", details: Optional[Any] = None):
        super().__init__(message, code=type(self).code, status_code=500, details=details)


class SendFailedError(ProviderError):
    code = "SEND_FAILED"


class GroupCreateFailedError(ProviderError):
    code = "GROUP_CREATE_FAILED"


class SettingsUpdateFailedError(ProviderError):
    code = "SETTINGS_UPDATE_FAILED"


class ParticipantsUpdateFailedError(ProviderError):
    code = "PARTICIPANTS_UPDATE_FAILED"


class GroupQueryFailedError(ProviderError):
    code = "GROUP_QUERY_FAILED"


class InviteLinkFailedError(ProviderError):
    code = "INVITE_LINK_FAILED"


class RevokeFailedError(ProviderError):
    code = "REVOKE_FAILED"
