# pocketledger/errors.py


class SheetError(RuntimeError):
    """The remote sheet could not be read."""


class UploadTooLarge(ValueError):
    pass


class StatementAnalysisError(RuntimeError):
    """The model call for a statement failed or returned unusable output."""


class LedgerError(ValueError):
    """A user-facing validation failure; str(e) is shown as the notification."""
