"""Domain exceptions raised by the file lifecycle core.

Routes translate these into HTTP status codes; the core never builds HTTP
responses itself.
"""


class CodedropError(Exception):
    """Base class for every error raised by the core."""
    pass


class FileNotFound(CodedropError):
    """Unknown code/id, or the record is no longer active.

    Expired and never-existing records raise the same error.
    """
    pass


class UploadRejected(CodedropError):
    """Caller supplied invalid upload parameters. Raised before any I/O."""
    pass


class InvalidExpirationClass(UploadRejected):
    pass


class InvalidDownloadLimit(UploadRejected):
    pass


class MessageTooLong(UploadRejected):
    pass


class FileTooLarge(UploadRejected):
    pass


class EmptyUpload(UploadRejected):
    pass


class StorageUnavailable(CodedropError):
    """The metadata store or blob store could not be reached."""
    pass


class BlobUploadFailed(StorageUnavailable):
    """Writing the file bytes to blob storage failed."""
    pass


class UploadTimeout(CodedropError):
    """The upload did not finish before its deadline."""
    pass


class CodeSpaceExhausted(CodedropError):
    """No free share code was found within the configured number of attempts."""
    pass


class InvalidAccountInput(CodedropError):
    pass


class UsernameTaken(CodedropError):
    pass


class InvalidCredentials(CodedropError):
    """Unknown username or wrong password (deliberately not distinguished)."""
    pass
