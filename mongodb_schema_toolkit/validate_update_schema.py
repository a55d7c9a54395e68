from collections.abc import Mapping

from .base import ABSENT, ArrayNode, SchemaNode, describe, unwrap
from .exceptions import (
    InvalidOperatorPayload, TypeMismatch, UnknownField, UnknownOperator, ValidationError,
)
from .paths import ResolvedPath, resolve_path
from .primitives import DateNode, NumberNode
from .utils import TIMESTAMP_FIELDS, UPDATE_OPERATORS, is_array, is_number


# Validation Logic

def validate_update(update_doc, shape, schema_options=None):
    """
    Validates a MongoDB update document against a document shape.

    Args:
        update_doc (dict): The update document, e.g. {'$set': {'name': 'x'}}.
        shape (dict): Mapping of field name to schema node (the root shape).
        schema_options (dict, optional): Root schema options. `with_timestamps`
            makes `createdAt`/`updatedAt` resolvable date fields and exempts
            them from `$currentDate` checks.

    Returns:
        dict: A copy of the update document with validated values substituted
              (dates normalised, string transforms applied). Operators with an
              empty payload are dropped.

    Raises:
        UnknownOperator: A top-level key is not a supported update operator.
        ValidationError: The first problem found, prefixed with "$op.path".
    """
    if not isinstance(update_doc, Mapping):
        raise InvalidOperatorPayload(f"Update document must be a dictionary-like object, got {describe(update_doc)}")

    with_timestamps = bool((schema_options or {}).get("with_timestamps"))
    if with_timestamps:
        shape = dict(shape)
        for field in TIMESTAMP_FIELDS:
            shape.setdefault(field, DateNode())

    # Closed set: a typo'd operator must never reach the store
    for operator in update_doc:
        if operator not in UPDATE_OPERATORS:
            raise UnknownOperator(f"Unknown update operator '{operator}'", (operator,))

    processed = {}
    for operator, payload in update_doc.items():
        if not isinstance(payload, Mapping):
            raise InvalidOperatorPayload(f"{operator} must be an object, got {describe(payload)}", (operator,))

        validator = _OPERATOR_VALIDATORS[operator]
        result = {}
        for path, value in payload.items():
            try:
                result[path] = validator(operator, path, value, shape, with_timestamps)
            except ValidationError as err:
                raise err.prefixed(f"{operator}.{path}") from err
        if result:
            processed[operator] = result

    return processed


def _resolve(path, shape) -> ResolvedPath:
    resolved = resolve_path(path, shape)
    if resolved is None:
        raise UnknownField(f'Field "{path}" does not exist in schema')
    return resolved


def _array_element(operator, path, resolved: ResolvedPath) -> SchemaNode:
    array_node = unwrap(resolved.node)
    if not isinstance(array_node, ArrayNode):
        raise TypeMismatch(f'{operator} can only be used on array fields, but "{path}" is not an array')
    return array_node.element


def _parse_element(element: SchemaNode, item, label):
    try:
        return element.parse_for_update(item)
    except ValidationError as err:
        raise err.prefixed(label) from err


def _set(operator, path, value, shape, with_timestamps):
    resolved = _resolve(path, shape)
    if value is ABSENT:
        raise InvalidOperatorPayload(f'Cannot set "{path}" to undefined, use $unset instead')
    if value is None:
        if not resolved.is_nullable:
            raise TypeMismatch(f'Field "{path}" is not nullable')
        return None
    return resolved.node.parse_for_update(value)


def _unset(operator, path, value, shape, with_timestamps):
    resolved = _resolve(path, shape)
    if not (value == "" or value is True or (is_number(value) and value == 1)):
        raise InvalidOperatorPayload(f'Value must be "", 1, or true, got {value!r}')
    if not resolved.is_optional:
        raise InvalidOperatorPayload(f'Cannot unset required field "{path}"')
    return value


def _arithmetic(operator, path, value, shape, with_timestamps):
    resolved = _resolve(path, shape)
    if not is_number(value):
        raise InvalidOperatorPayload(f"Value must be a number, got {describe(value)}")
    if not isinstance(unwrap(resolved.node), NumberNode):
        raise TypeMismatch(f'{operator} can only be used on number fields, but "{path}" is not a number')
    return value


def _compare(operator, path, value, shape, with_timestamps):
    resolved = _resolve(path, shape)
    if value is ABSENT:
        raise InvalidOperatorPayload("A value is required")
    if value is None and resolved.is_nullable:
        return None
    return resolved.node.parse_for_update(value)


def _current_date(operator, path, value, shape, with_timestamps):
    if with_timestamps and path in TIMESTAMP_FIELDS:
        # auto updated fields are skipped
        return value

    resolved = _resolve(path, shape)
    if isinstance(value, Mapping):
        if value.get("$type") not in ("date", "timestamp"):
            raise InvalidOperatorPayload(f'$type must be "date" or "timestamp", got {value.get("$type")!r}')
    elif not isinstance(value, bool):
        raise InvalidOperatorPayload("Value must be a boolean or object with $type field")

    if not isinstance(unwrap(resolved.node), DateNode):
        raise TypeMismatch(f'$currentDate can only be used on date fields, but "{path}" is not a date')
    return value


def _push(operator, path, value, shape, with_timestamps):
    element = _array_element(operator, path, _resolve(path, shape))

    if isinstance(value, Mapping) and "$each" in value:
        each = value["$each"]
        if not is_array(each):
            raise InvalidOperatorPayload("$each must be an array")
        # $slice, $sort and $position modifiers are forwarded untouched
        return {**value, "$each": [_parse_element(element, item, f"$each[{i}]") for i, item in enumerate(each)]}

    return element.parse_for_update(value)


def _pull(operator, path, value, shape, with_timestamps):
    element = _array_element(operator, path, _resolve(path, shape))
    # Objects are match conditions, not element values
    if isinstance(value, Mapping):
        return value
    return element.parse_for_update(value)


def _pull_all(operator, path, value, shape, with_timestamps):
    element = _array_element(operator, path, _resolve(path, shape))
    if not is_array(value):
        raise InvalidOperatorPayload(f"Value must be an array, got {describe(value)}")
    return [_parse_element(element, item, f"[{i}]") for i, item in enumerate(value)]


def _pop(operator, path, value, shape, with_timestamps):
    _array_element(operator, path, _resolve(path, shape))
    if not (is_number(value) and value in (-1, 1)):
        raise InvalidOperatorPayload(f"Value must be -1 or 1, got {value!r}")
    return value


def _bit(operator, path, value, shape, with_timestamps):
    resolved = _resolve(path, shape)
    if not isinstance(value, Mapping):
        raise InvalidOperatorPayload(f"Value must be an object, got {describe(value)}")

    present = [key for key in ("and", "or", "xor") if key in value]
    if len(present) != 1 or len(value) != 1:
        raise InvalidOperatorPayload('Value must have exactly one of "and", "or", or "xor" operators')
    operand = value[present[0]]
    if not isinstance(operand, int) or isinstance(operand, bool):
        raise InvalidOperatorPayload(f"Bitwise operand must be an integer, got {describe(operand)}")

    if not isinstance(unwrap(resolved.node), NumberNode):
        raise TypeMismatch(f'$bit can only be used on number fields, but "{path}" is not a number')
    return value


def _rename(operator, path, value, shape, with_timestamps):
    source = _resolve(path, shape)
    if not isinstance(value, str):
        raise InvalidOperatorPayload(f"Target must be a string, got {describe(value)}")
    target = _resolve(value, shape)

    if type(unwrap(source.node)) is not type(unwrap(target.node)):
        raise TypeMismatch(f'Cannot rename "{path}" to "{value}": incompatible types')
    return value


_OPERATOR_VALIDATORS = {
    '$set': _set,
    '$setOnInsert': _set,
    '$unset': _unset,
    '$inc': _arithmetic,
    '$mul': _arithmetic,
    '$min': _compare,
    '$max': _compare,
    '$currentDate': _current_date,
    '$addToSet': _push,
    '$push': _push,
    '$pull': _pull,
    '$pullAll': _pull_all,
    '$pop': _pop,
    '$bit': _bit,
    '$rename': _rename,
}
