class DashboardError(Exception):
    """Base exception for the dashboard services"""
    pass


class ConfigurationError(DashboardError):
    """Required environment configuration is missing or invalid"""
    pass


class SpreadsheetFormatError(DashboardError):
    """Uploaded spreadsheet can't be read or lacks the expected columns"""
    pass


class StorageError(DashboardError):
    """A call against the backend failed during one step of a flow"""

    def __init__(self, step, original):
        self.step = step
        self.original = original
        super().__init__(f"{step} failed: {original}")


class RecordNotFoundError(DashboardError):
    """Lookup by RO, unit or id yielded no rows"""
    pass


class UndoUnavailableError(DashboardError):
    """No stored snapshot to restore for a unit"""
    pass


class AuthorizationError(DashboardError):
    """Request did not carry an acceptable access key"""

    def __init__(self, message, status_code=401):
        self.status_code = status_code
        super().__init__(message)


class InvalidRequestError(DashboardError):
    """Request parameters or JSON payload failed validation"""
    pass
