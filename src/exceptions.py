"""Custom exception hierarchy for Noteline.

Pass-fatal errors abort a whole scan-and-process pass. Item errors are
scoped to a single recording and never stop the batch.
"""


class NotelineError(Exception):
    """Base exception for all Noteline errors."""


# --- Pass-fatal ---


class PassFatalError(NotelineError):
    """Raised when the current pass cannot continue."""


class CredentialInvalidError(PassFatalError):
    """Raised when the stored Google credentials are revoked or unusable.

    The token file has already been removed; the caller must restart the
    authorization flow.
    """


class ScanError(PassFatalError):
    """Raised when listing the watched Drive folder fails."""


class PersistenceError(PassFatalError):
    """Raised when reading or writing persisted state (cursor, token) fails."""


# --- Item-scoped ---


class ItemError(NotelineError):
    """Raised when processing a single recording fails."""

    kind = "ItemFailure"


class DownloadError(ItemError):
    """Raised when fetching a recording's bytes from Drive fails."""

    kind = "DownloadFailure"


class TranscriptionError(ItemError):
    """Raised when speech-to-text fails or yields no usable text."""

    kind = "TranscriptionFailure"


class SummarizationError(ItemError):
    """Raised when the LLM call itself fails."""

    kind = "SummarizationFailure"


class UnparsableResponseError(ItemError):
    """Raised when the LLM output cannot be repaired into a summary record."""

    kind = "UnparsableResponse"


class PublishError(ItemError):
    """Raised when creating or filling the Notion page fails."""

    kind = "PublishFailure"
