"""Domain exceptions raised by the packing and backup services.

Blueprints translate these into JSON error responses; services never call
``abort`` themselves.
"""


class FbaTrackError(Exception):
    """Base exception for fbatrack domain errors"""
    pass


class AllocationError(FbaTrackError):
    """Raised when a quantity edit references an unknown item or box"""
    pass


class AllocationSaveError(AllocationError):
    """Raised when persisting pending quantity changes fails.

    The allocation session keeps its pending overlay so the caller can retry.
    """
    def __init__(self, message: str, pending_items: int = 0):
        self.pending_items = pending_items
        super().__init__(message)


class PackGroupCsvError(FbaTrackError):
    """Raised for unreadable or incomplete Amazon pack group CSV files"""
    pass


class ExportValidationError(FbaTrackError):
    """Raised when a shipment is not ready for export; carries every problem found"""
    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(f"Cannot export shipment: {len(self.errors)} problem(s) found")


class BackupFormatError(FbaTrackError):
    """Raised when an uploaded archive is not a usable backup"""
    pass


class StorageError(FbaTrackError):
    """Raised when the receipt store cannot be reached or rejects a request"""
    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)
