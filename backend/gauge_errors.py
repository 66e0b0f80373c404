# backend/gauge_errors.py

"""
Error taxonomy for the gauge service.

Every error carries a machine-readable error_code and a human message.
The HTTP layer maps each class to a status code via HTTP_STATUS_BY_ERROR.
"""

from typing import Optional


class GaugeServiceError(Exception):
    """Base gauge service error"""
    def __init__(self, error_code: str, message: str, field: Optional[str] = None):
        self.error_code = error_code
        self.message = message
        self.field = field
        super().__init__(self.message)


class InvalidInputError(GaugeServiceError):
    """Malformed or out-of-range request value"""
    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__("INVALID_INPUT", message, field=field)


class CalibrationNotFoundError(GaugeServiceError):
    """No calibration entry for an otherwise valid reading"""
    def __init__(self, value_cm):
        self.value_cm = value_cm
        super().__init__(
            "CALIBRATION_NOT_FOUND",
            f"No conversion found for {value_cm} cm",
            field="value_cm"
        )


class EntryNotFoundError(GaugeServiceError):
    """Conversion record does not exist"""
    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__("ENTRY_NOT_FOUND", "Conversion entry not found", field="id")


class UnauthorizedError(GaugeServiceError):
    """Missing or invalid authentication proof"""
    def __init__(self, message: str = "Not authenticated"):
        super().__init__("UNAUTHORIZED", message)


class ForbiddenError(GaugeServiceError):
    """Authenticated but lacking ownership or admin privilege"""
    def __init__(self, message: str):
        super().__init__("FORBIDDEN", message)


class ConfigurationError(GaugeServiceError):
    """Required server-side setting is absent"""
    def __init__(self, setting: str):
        self.setting = setting
        super().__init__(
            "CONFIGURATION_ERROR",
            f"Server configuration error: {setting} is not configured",
            field=setting
        )


class StorageError(GaugeServiceError):
    """Persistence layer failure"""
    def __init__(self, operation: str):
        self.operation = operation
        super().__init__("STORAGE_ERROR", f"Storage failure during {operation}")


HTTP_STATUS_BY_ERROR = {
    InvalidInputError: 400,
    UnauthorizedError: 401,
    ForbiddenError: 403,
    CalibrationNotFoundError: 404,
    EntryNotFoundError: 404,
    ConfigurationError: 500,
    StorageError: 500,
}

# Messages returned to clients for server-side failures; details stay in logs
GENERIC_SERVER_MESSAGES = {
    ConfigurationError: "Server configuration error",
    StorageError: "Server error while accessing storage",
}


def status_code_for(error: GaugeServiceError) -> int:
    for error_class in type(error).__mro__:
        if error_class in HTTP_STATUS_BY_ERROR:
            return HTTP_STATUS_BY_ERROR[error_class]
    return 500


def client_message_for(error: GaugeServiceError) -> str:
    for error_class in type(error).__mro__:
        if error_class in GENERIC_SERVER_MESSAGES:
            return GENERIC_SERVER_MESSAGES[error_class]
    return error.message
