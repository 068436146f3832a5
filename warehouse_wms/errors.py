"""Exception hierarchy shared by the warehouse modules."""


class WmsError(Exception):
    """Base class for every error raised by the package."""


class SyncError(WmsError):
    """A synchronisation or replicated-document operation failed."""


class ValidationError(WmsError):
    """Input was rejected because it breaks a business rule."""


class ExportError(WmsError):
    """A report could not be produced in the requested format."""


class SerializationError(WmsError):
    """Data could not be encoded or decoded."""