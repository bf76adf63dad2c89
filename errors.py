"""Exception types shared by the persistence, capture and counter layers."""


class SoloLevellerError(Exception):
    """Base class for every error raised by this package."""


class StoreUnavailable(SoloLevellerError):
    """The record store could not be opened (permissions, disk, corrupt or newer schema)."""


class PersistenceError(SoloLevellerError):
    """A single record store operation failed."""

    def __init__(self, collection: str, operation: str, detail: str = ""):
        self.collection = collection
        self.operation = operation
        self.detail = detail
        message = f"{operation} failed on {collection!r}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class DuplicateId(PersistenceError):
    """``add`` was asked to insert an id that already exists."""

    def __init__(self, collection: str, record_id: str):
        self.record_id = record_id
        super().__init__(collection, "add", f"id {record_id!r} already exists")


class CaptureUnavailable(SoloLevellerError):
    """Audio capture is denied, missing, or already owned by another detector."""


class ValidationError(SoloLevellerError, ValueError):
    """Input rejected before any state was touched."""


class InvalidTarget(ValidationError):
    pass


class EmptyMantra(ValidationError):
    pass


class EmptyName(ValidationError):
    pass


class InvalidProfile(ValidationError):
    pass


class NoActiveSession(SoloLevellerError):
    """An event or end request arrived while no session was active."""


class SessionNotFound(SoloLevellerError, KeyError):
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(session_id)

    def __str__(self):
        return f"mantra session {self.session_id!r} not found"


class InsufficientEnergy(SoloLevellerError):
    def __init__(self, required: float, available: float):
        self.required = required
        self.available = available
        super().__init__(f"emission needs {required:.2f} energy, pool holds {available:.2f}")
