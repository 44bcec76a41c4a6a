import os.path
from typing import Optional

from ._output import output

with open(os.path.dirname(__file__) + "/version.txt") as f:
    __version__ = f.read().strip()


def prepare_error(error):
    return f"{error.__class__.__name__}: {error}"


class ReportingException(Exception):
    """Exceptions that support user-readable reporting."""

    def __str__(self):
        raise NotImplementedError()

    def report(self):
        raise NotImplementedError()


class InvariantViolation(ReportingException):
    """The indexer did not match the real structure of a document.

    This is a defect, not a user error, but it travels through the normal
    exception path so callers can report the location before exiting.

    """

    message: str

    @classmethod
    def from_context(cls, message):
        self = cls()
        self.message = message
        return self

    def __str__(self):
        return f"Internal inconsistency: {self.message}"

    def report(self):
        output.error("Internal inconsistency (please report this as a bug)")
        output.tabular("message", self.message, red=True)


class KeysParseError(ReportingException):
    """The data block of a secret could not be indexed."""

    message: str

    @classmethod
    def from_context(cls, message):
        self = cls()
        self.message = message
        return self

    def __str__(self):
        return self.message

    def report(self):
        output.error(self.message)


class DocumentDecodeError(ReportingException):
    """A manifest document is not valid for its kind."""

    message: str
    index: int

    @classmethod
    def from_context(cls, message, index=None):
        self = cls()
        self.message = message
        self.index = index
        return self

    def __str__(self):
        if self.index is None:
            return self.message
        return f"document {self.index}: {self.message}"

    def report(self):
        output.error("Error decoding manifest")
        if self.index is not None:
            output.tabular("document", str(self.index))
        output.tabular("message", self.message, red=True)


class MissingKeyIdError(ReportingException):
    """There are values to encrypt but no KMS key was given."""

    def __str__(self):
        return "Key ID cannot be blank"

    def report(self):
        output.error(str(self))
        output.annotate(
            "Pass a key with -k or configure a default in .keys.yml."
        )


class KeyMismatchError(ReportingException):
    """The values of one secret were encrypted with different KMS keys."""

    expected: str
    actual: str
    key: str

    @classmethod
    def from_context(cls, expected, actual, key):
        self = cls()
        self.expected = expected
        self.actual = actual
        self.key = key
        return self

    def __str__(self):
        return (
            f"key mismatch between {self.expected} and {self.actual} "
            f"for {self.key}"
        )

    def report(self):
        output.error("KMS key mismatch")
        output.tabular("key", self.key, red=True)
        output.tabular("expected", self.expected)
        output.tabular("actual", self.actual)


class PayloadError(ReportingException):
    """An encrypted value could not be unpacked."""

    message: str
    key: Optional[str]

    @classmethod
    def from_context(cls, message, key=None):
        self = cls()
        self.message = message
        self.key = key
        return self

    def __str__(self):
        if self.key is None:
            return self.message
        return f"{self.message} (key {self.key})"

    def report(self):
        output.error(self.message)
        if self.key is not None:
            output.tabular("key", self.key, red=True)


class DecryptError(ReportingException):
    """A sealed value failed authentication (tampered or wrong key)."""

    key: str

    @classmethod
    def from_context(cls, key):
        self = cls()
        self.key = key
        return self

    def __str__(self):
        return f"error decrypting value with data key for {self.key}"

    def report(self):
        output.error("Error decrypting value with data key")
        output.tabular("key", self.key, red=True)


class KMSCallError(ReportingException):
    """There was an error calling the KMS service."""

    operation: str
    key_id: str
    error: str

    @classmethod
    def from_context(cls, operation, error, key_id=None):
        self = cls()
        self.operation = operation
        self.key_id = key_id or ""
        self.error = str(error)
        return self

    def __str__(self):
        if self.key_id:
            return f"KMS {self.operation} ({self.key_id}) failed: {self.error}"
        return f"KMS {self.operation} failed: {self.error}"

    def report(self):
        output.error("Error while calling KMS")
        output.tabular("operation", self.operation, red=True)
        if self.key_id:
            output.tabular("key", self.key_id)
        output.tabular("message", self.error, separator=":\n")


class KeySettingsError(ReportingException):
    """The key settings file could not be used."""

    filename: str
    error: str

    @classmethod
    def from_context(cls, filename, error):
        self = cls()
        self.filename = str(filename)
        self.error = str(error)
        return self

    def __str__(self):
        return f"error loading key settings file {self.filename}: {self.error}"

    def report(self):
        output.error("Error loading key settings")
        output.tabular("file", self.filename, red=True)
        output.tabular("message", self.error, separator=":\n")


class FileLockedError(ReportingException):
    """A file is already locked and we do not want to block."""

    filename: str

    @classmethod
    def from_context(cls, filename):
        self = cls()
        self.filename = filename
        return self

    def __str__(self):
        return "File already locked: {}".format(self.filename)

    def report(self):
        output.error(str(self))


class ManifestError(ReportingException):
    """Wraps an error with the manifest location it happened at."""

    operation: str
    location: str
    error: Exception

    @classmethod
    def from_context(cls, operation, location, error):
        self = cls()
        self.operation = operation
        self.location = location
        self.error = error
        return self

    def __str__(self):
        return f"error {self.operation} {self.location}: {self.error}"

    def report(self):
        output.error(f"Error {self.operation} {self.location}")
        if isinstance(self.error, ReportingException):
            self.error.report()
        else:
            output.tabular("message", prepare_error(self.error), red=True)
