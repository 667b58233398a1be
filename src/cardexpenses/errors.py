from __future__ import annotations


IMPORT_FAILURE_MESSAGE = (
    "Import failed. File must have columns: Data operazione, Carta, Descrizione, Importo in euro."
)


class ExpenseEngineError(Exception):
    pass


class ImportFailure(ExpenseEngineError):
    """Raised when a statement file cannot be opened or decoded at all."""

    def __init__(self, message: str = IMPORT_FAILURE_MESSAGE, *, file_name: str | None = None) -> None:
        super().__init__(message)
        self.file_name = file_name


class AttachmentPreviewFailure(ExpenseEngineError):
    """Raised when an attachment image cannot be decoded or scaled."""


class PersistenceUnavailable(ExpenseEngineError):
    """Raised when the authoritative report store cannot be reached."""


class ReportClosedError(ExpenseEngineError):
    pass


class UnknownEntityError(ExpenseEngineError, KeyError):
    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "Unknown entity"
