from __future__ import annotations


class ManagerHubError(Exception):
    code: str = "MANAGER_HUB_ERROR"


class StoreError(ManagerHubError):
    """A read or write against the record store failed."""

    code = "STORE_ERROR"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Record store operation '{operation}' failed: {detail}")


class ThresholdEmailInputError(ManagerHubError):
    """Raised when a caller builds a threshold email without all required fields."""

    code = "THRESHOLD_EMAIL_INPUT"

    def __init__(self, missing_fields: list[str]):
        self.missing_fields = missing_fields
        super().__init__(f"Missing required threshold email fields: {', '.join(missing_fields)}")


class NotificationError(ManagerHubError):
    code = "NOTIFICATION_FAILED"
