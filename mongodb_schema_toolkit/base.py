import copy
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from .exceptions import (
    SchemaError, TypeMismatch, ConstraintViolation, MissingRequiredField, CustomValidationFailed,
    ValidationError,
)
from .models import IndexOptions
from .utils import INDEX_DIRECTIONS, get_bson_type_name, is_array


class _Absent:
    """Marker for "no value supplied". Distinct from None, which is BSON null."""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "ABSENT"

    def __bool__(self):
        return False

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self

ABSENT = _Absent()


def describe(value) -> str:
    """Type name used in error messages."""
    if value is ABSENT:
        return "undefined"
    return get_bson_type_name(value)


def check_index_options(options: Dict[str, Any]) -> Dict[str, Any]:
    try:
        return IndexOptions(**options).model_dump(exclude_none=True)
    except PydanticValidationError as e:
        raise SchemaError(f"Invalid index options {options}: {e}") from e


class SchemaNode:
    """
    A validator for one shape of data.

    Nodes are immutable: every builder call returns a new node carrying a copy
    of the previous constraints and index metadata.

    parse(v) validates a value for document creation; a missing value (ABSENT)
    fails unless a default or optional wrapper intervenes.
    parse_for_update(v) validates a value inside a partial update; ABSENT is
    returned untouched and defaults are never applied.
    """
    kind = "unknown"
    is_document_schema = False

    def __init__(self):
        self._checks: Dict[str, Any] = {}
        self._index_direction = None
        self._index_options: Dict[str, Any] = {}

    # --- immutability helpers ---

    def _copy(self):
        clone = copy.copy(self)
        clone._checks = dict(self._checks)
        clone._index_options = copy.deepcopy(self._index_options)
        return clone

    def _with_checks(self, **changes):
        clone = self._copy()
        clone._checks.update(changes)
        return clone

    def get_checks(self) -> Dict[str, Any]:
        return dict(self._checks)

    # --- parsing ---

    def _check(self, v):
        raise NotImplementedError

    def parse(self, v):
        if v is ABSENT:
            raise MissingRequiredField("Field is required")
        return self._check(v)

    def parse_for_update(self, v):
        if v is ABSENT:
            return ABSENT
        return self._check(v)

    # --- index metadata ---

    def get_index_meta(self):
        """Returns (direction, options) or None when this node declares no index."""
        if self._index_direction is None:
            return None
        return self._index_direction, copy.deepcopy(self._index_options)

    def _with_index(self, direction, **options):
        clone = self._copy()
        clone._index_direction = direction
        clone._index_options.update(check_index_options(options))
        return clone

    def index(self, direction=1, **options):
        if direction not in INDEX_DIRECTIONS:
            raise SchemaError(f"Invalid index direction {direction!r}, expected one of {INDEX_DIRECTIONS}")
        return self._with_index(direction, **options)

    def unique_index(self):
        return self._with_index(self._index_direction or 1, unique=True)

    def sparse_index(self):
        return self._with_index(self._index_direction or 1, sparse=True)

    def partial_index(self, expr: Dict[str, Any]):
        return self._with_index(self._index_direction or 1, partialFilterExpression=expr)

    def hashed_index(self):
        return self._with_index("hashed")

    def text_index(self):
        return self._with_index("text")

    # --- wrapping ---

    def optional(self) -> "OptionalNode":
        return OptionalNode(self)

    def nullable(self) -> "NullableNode":
        return NullableNode(self)

    def array(self) -> "ArrayNode":
        return ArrayNode(self)

    def default(self, value) -> "DefaultNode":
        """
        Supplies a value when the field is missing on creation.

        A callable is treated as a factory and called on every parse.
        """
        return DefaultNode(self, value)

    def validate(self, predicate: Callable[[Any], bool], message: Optional[str] = None) -> "CustomValidationNode":
        """Custom validation method for your schema."""
        return CustomValidationNode(self, predicate, message)

    def __repr__(self):
        return f"{type(self).__name__}({self._checks})"


class WrapperNode(SchemaNode):
    """A node that modifies the parse contract of exactly one inner node."""

    def __init__(self, inner: SchemaNode):
        super().__init__()
        self.inner = inner

    @property
    def kind(self):
        return self.inner.kind

    def __repr__(self):
        return f"{type(self).__name__}({self.inner!r})"


def unwrap(node: SchemaNode) -> SchemaNode:
    """Strips every wrapper layer and returns the concrete node."""
    while isinstance(node, WrapperNode):
        node = node.inner
    return node


def check_child(node, label: str) -> SchemaNode:
    """Rejects anything but a plain schema node as a child of a composite."""
    if not isinstance(node, SchemaNode):
        raise SchemaError(f"{label} must be a schema node, got {type(node).__name__}")
    if unwrap(node).is_document_schema:
        raise SchemaError(f"{label}: a DocumentSchema cannot be embedded, use an object schema instead")
    return node


class OptionalNode(WrapperNode):
    def parse(self, v):
        return ABSENT if v is ABSENT else self.inner.parse(v)

    def parse_for_update(self, v):
        return ABSENT if v is ABSENT else self.inner.parse_for_update(v)


class NullableNode(WrapperNode):
    def parse(self, v):
        return None if v is None else self.inner.parse(v)

    def parse_for_update(self, v):
        if v is ABSENT:
            return ABSENT
        return None if v is None else self.inner.parse_for_update(v)


class DefaultNode(WrapperNode):
    def __init__(self, inner: SchemaNode, value):
        super().__init__(inner)
        self.default_value = value

    def produce_default(self):
        if callable(self.default_value):
            return self.default_value()
        # Mutable defaults must not be shared between documents
        return copy.deepcopy(self.default_value)

    def parse(self, v):
        if v is ABSENT:
            v = self.produce_default()
        return self.inner.parse(v)

    def parse_for_update(self, v):
        if v is ABSENT:
            return ABSENT
        return self.inner.parse_for_update(v)


class CustomValidationNode(WrapperNode):
    def __init__(self, inner: SchemaNode, predicate: Callable[[Any], bool], message: Optional[str] = None):
        super().__init__(inner)
        self.predicate = predicate
        self.message = message

    def _run_predicate(self, parsed):
        if parsed is ABSENT:
            return parsed
        if not self.predicate(parsed):
            raise CustomValidationFailed(self.message or "Custom validation failed")
        return parsed

    def parse(self, v):
        return self._run_predicate(self.inner.parse(v))

    def parse_for_update(self, v):
        if v is ABSENT:
            return ABSENT
        return self._run_predicate(self.inner.parse_for_update(v))


class ArrayNode(SchemaNode):
    kind = "array"

    def __init__(self, element: SchemaNode):
        super().__init__()
        self.element = check_child(element, "Array element")

    def min(self, n: int) -> "ArrayNode":
        return self._with_checks(min=n)

    def max(self, n: int) -> "ArrayNode":
        return self._with_checks(max=n)

    def _check_length(self, v):
        if not is_array(v):
            raise TypeMismatch(f"Expected an array, got {describe(v)}")
        length = len(v)
        if "min" in self._checks and length < self._checks["min"]:
            raise ConstraintViolation(f"Array length must be greater than or equal to {self._checks['min']}")
        if "max" in self._checks and length > self._checks["max"]:
            raise ConstraintViolation(f"Array length must be less than or equal to {self._checks['max']}")

    def _check(self, v):
        self._check_length(v)
        out = []
        for i, item in enumerate(v):
            try:
                out.append(self.element.parse(item))
            except ValidationError as err:
                raise err.prefixed(f"[{i}]", " ", key=i) from err
        return out

    def parse_for_update(self, v):
        if v is ABSENT:
            return ABSENT
        self._check_length(v)
        out = []
        for i, item in enumerate(v):
            try:
                parsed = self.element.parse_for_update(item)
                # Elements of a present array cannot be omitted
                if parsed is ABSENT:
                    parsed = self.element.parse(item)
                out.append(parsed)
            except ValidationError as err:
                raise err.prefixed(f"[{i}]", " ", key=i) from err
        return out

    def __repr__(self):
        return f"ArrayNode({self.element!r}, {self._checks})"
