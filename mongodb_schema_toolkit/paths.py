from typing import Dict, NamedTuple, Optional

from .base import ArrayNode, NullableNode, OptionalNode, SchemaNode, WrapperNode, unwrap
from .composites import ObjectNode
from .exceptions import StructuralMismatch, UnknownField
from .utils import ARRAY_SEGMENT_REGEX


class ResolvedPath(NamedTuple):
    node: SchemaNode
    is_optional: bool
    is_nullable: bool


def _wrapper_flags(node: SchemaNode):
    """Returns (is_optional, is_nullable) for every wrapper layer around a node."""
    is_optional = is_nullable = False
    while isinstance(node, WrapperNode):
        if isinstance(node, OptionalNode):
            is_optional = True
        elif isinstance(node, NullableNode):
            is_nullable = True
        node = node.inner
    return is_optional, is_nullable


def _strip_optional_nullable(node: SchemaNode) -> SchemaNode:
    while isinstance(node, (OptionalNode, NullableNode)):
        node = node.inner
    return node


def resolve_path(path: str, shape: Dict[str, SchemaNode]) -> Optional[ResolvedPath]:
    """
    Finds the node governing a dot-separated field path.

    Numeric segments and the positional operators ($, $[], $[id]) dereference
    an array element. A field segment after an array of objects addresses the
    field of every element, so "items.name" and "items.0.name" resolve to the
    same node. Optional and nullable layers are stripped from the returned
    node and recorded in the flags if any traversed layer carried them.

    Returns None for an empty path; raises UnknownField or StructuralMismatch
    for the first segment that cannot be resolved.
    """
    segments = path.split(".")

    node: Optional[SchemaNode] = None
    is_optional = False
    is_nullable = False

    for i, segment in enumerate(segments):
        if not segment.strip():
            continue
        prefix = ".".join(segments[:i])
        up_to = ".".join(segments[:i + 1])

        if ARRAY_SEGMENT_REGEX.match(segment):
            container = unwrap(node) if node is not None else None
            if container is None:
                raise UnknownField(f'Field "{up_to}" does not exist in schema')
            if not isinstance(container, ArrayNode):
                raise StructuralMismatch(f'Cannot use array index on non-array field at "{prefix}"')
            node = container.element
        else:
            if node is None:
                current_shape = shape
            else:
                container = unwrap(node)
                if isinstance(container, ObjectNode):
                    current_shape = container.get_shape()
                elif isinstance(container, ArrayNode):
                    element = unwrap(container.element)
                    if not isinstance(element, ObjectNode):
                        raise StructuralMismatch(f'Cannot access nested field on non-object array element at "{prefix}"')
                    current_shape = element.get_shape()
                else:
                    raise StructuralMismatch(f'Cannot access nested field "{segment}" on non-object field at "{prefix}"')

            if segment not in current_shape:
                raise UnknownField(f'Field "{up_to}" does not exist in schema')
            node = current_shape[segment]

        layer_optional, layer_nullable = _wrapper_flags(node)
        is_optional = is_optional or layer_optional
        is_nullable = is_nullable or layer_nullable
        node = _strip_optional_nullable(node)

    if node is None:
        return None
    return ResolvedPath(node, is_optional, is_nullable)
