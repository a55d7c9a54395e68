from collections.abc import Mapping
from typing import Dict, List

from .base import ABSENT, SchemaNode, check_child, describe
from .exceptions import MissingRequiredField, StructuralMismatch, TypeMismatch, ValidationError
from .utils import is_array


def _check_shape(shape: Dict[str, SchemaNode]) -> Dict[str, SchemaNode]:
    return {key: check_child(node, f"Field '{key}'") for key, node in shape.items()}


class ObjectNode(SchemaNode):
    """An embedded document: a fixed mapping of field name to node."""
    kind = "object"

    def __init__(self, shape: Dict[str, SchemaNode]):
        super().__init__()
        self._shape = _check_shape(shape)

    def get_shape(self) -> Dict[str, SchemaNode]:
        return dict(self._shape)

    def _check_mapping(self, v):
        if is_array(v):
            raise TypeMismatch("Expected an object, but received an array")
        if not isinstance(v, Mapping):
            raise TypeMismatch(f"Expected an object, got {describe(v)}")

    def _check(self, v):
        self._check_mapping(v)
        out = {}
        for key, node in self._shape.items():
            try:
                parsed = node.parse(v[key] if key in v else ABSENT)
            except ValidationError as err:
                raise err.prefixed(key) from err
            if parsed is not ABSENT:
                out[key] = parsed
        return out

    def parse_for_update(self, v):
        if v is ABSENT:
            return ABSENT
        self._check_mapping(v)
        out = {}
        for key, node in self._shape.items():
            try:
                parsed = node.parse_for_update(v[key] if key in v else ABSENT)
            except ValidationError as err:
                raise err.prefixed(key) from err
            if parsed is not ABSENT:
                out[key] = parsed
        return out

    def __repr__(self):
        return f"{type(self).__name__}({self._shape!r})"


class TupleNode(SchemaNode):
    """Fixed-position array."""
    kind = "tuple"

    def __init__(self, items: List[SchemaNode]):
        super().__init__()
        self._items = [check_child(node, f"Tuple item {i}") for i, node in enumerate(items)]

    def get_items(self) -> List[SchemaNode]:
        return list(self._items)

    def _check_length(self, v):
        if not is_array(v):
            raise TypeMismatch(f"Expected a tuple (must be an array), got {describe(v)}")
        if len(v) != len(self._items):
            raise StructuralMismatch(f"Expected tuple of length {len(self._items)}, received of length {len(v)}")

    def _check(self, v):
        self._check_length(v)
        out = []
        for i, (node, item) in enumerate(zip(self._items, v)):
            try:
                out.append(node.parse(item))
            except ValidationError as err:
                raise err.prefixed(f"[{i}]", " ", key=i) from err
        return out

    def parse_for_update(self, v):
        if v is ABSENT:
            return ABSENT
        self._check_length(v)
        out = []
        for i, (node, item) in enumerate(zip(self._items, v)):
            try:
                parsed = node.parse_for_update(item)
                if parsed is ABSENT:
                    parsed = node.parse(item)
                out.append(parsed)
            except ValidationError as err:
                raise err.prefixed(f"[{i}]", " ", key=i) from err
        return out

    def __repr__(self):
        return f"TupleNode({self._items!r})"


class UnionNode(SchemaNode):
    """Ordered alternatives; the first candidate that accepts the value wins."""
    kind = "union"

    def __init__(self, candidates: List[SchemaNode]):
        super().__init__()
        self._candidates = [check_child(node, "Union candidate") for node in candidates]

    def get_candidates(self) -> List[SchemaNode]:
        return list(self._candidates)

    def _no_match(self, v):
        if v is ABSENT:
            return MissingRequiredField("Field is required")
        kinds = " | ".join(node.kind for node in self._candidates)
        return TypeMismatch(f"Expected one of: {kinds}, got {describe(v)}")

    def parse(self, v):
        for node in self._candidates:
            try:
                return node.parse(v)
            except ValidationError:
                # A later candidate may still accept the value
                continue
        raise self._no_match(v)

    def parse_for_update(self, v):
        if v is ABSENT:
            return ABSENT
        for node in self._candidates:
            try:
                parsed = node.parse_for_update(v)
            except ValidationError:
                continue
            if parsed is not ABSENT:
                return parsed
        raise self._no_match(v)

    def __repr__(self):
        return f"UnionNode({self._candidates!r})"
