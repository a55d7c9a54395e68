class SchemaToolkitError(Exception):
    """Base exception for the MongoDB Schema Toolkit."""
    pass

class ConfigurationError(SchemaToolkitError):
    """Exception raised for errors in configuration."""
    pass

class SchemaError(SchemaToolkitError):
    """Exception raised when a schema is built incorrectly."""
    pass

class CollectionNotFound(SchemaToolkitError):
    """Exception raised by an index store when the collection does not exist yet."""
    pass

class ExecutionError(SchemaToolkitError):
    """Exception raised when a write fails in MongoDB."""
    pass

class IndexSyncError(SchemaToolkitError):
    """Exception raised during index synchronization."""
    pass


class ValidationError(SchemaToolkitError):
    """
    Base exception for every parse and update validation failure.

    The message carries the dotted path accumulated while descending the
    schema tree; `path` holds the same segments as a tuple.
    """

    def __init__(self, message: str, path=()):
        super().__init__(message)
        self.message = message
        self.path = tuple(path)

    def prefixed(self, label, separator: str = ": ", key=None) -> "ValidationError":
        """
        Returns a new error of the same class with `label` prepended to the message.

        `key` is the path segment recorded in `path`; it defaults to `label`.
        """
        segment = label if key is None else key
        err = type(self)(f"{label}{separator}{self.message}", (segment,) + self.path)
        err.__cause__ = self
        return err

class TypeMismatch(ValidationError):
    """The value is of the wrong kind entirely."""

class ConstraintViolation(ValidationError):
    """A min/max/enum/pattern/length constraint was violated."""

class MissingRequiredField(ValidationError):
    """A required value was not supplied."""

class UnknownField(ValidationError):
    """A path does not exist in the schema."""

class StructuralMismatch(ValidationError):
    """Wrong tuple arity, array index on a non-array field, and similar shape errors."""

class InvalidOperatorPayload(ValidationError):
    """An update operator payload breaks the operator's shape rules."""

class UnknownOperator(ValidationError):
    """An update document uses a key outside the supported operator set."""

class CustomValidationFailed(ValidationError):
    """A caller-supplied predicate rejected the value."""
