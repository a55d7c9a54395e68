from decimal import Decimal

from bson import Binary, Decimal128, ObjectId
from bson.binary import (
    BINARY_SUBTYPE, FUNCTION_SUBTYPE, OLD_BINARY_SUBTYPE, OLD_UUID_SUBTYPE, UUID_SUBTYPE, MD5_SUBTYPE,
    USER_DEFINED_SUBTYPE,
)

from .base import SchemaNode, describe
from .exceptions import ConstraintViolation, SchemaError, TypeMismatch

# 6: encrypted, 7: column, 8: sensitive, 9: vector
BSON_SUBTYPES = (
    BINARY_SUBTYPE, FUNCTION_SUBTYPE, OLD_BINARY_SUBTYPE, OLD_UUID_SUBTYPE, UUID_SUBTYPE, MD5_SUBTYPE,
    6, 7, 8, 9, USER_DEFINED_SUBTYPE,
)


class ObjectIdNode(SchemaNode):
    kind = "objectId"

    def default(self, value):
        """Pass "generate" to create a fresh ObjectId for every new document."""
        if value == "generate":
            value = ObjectId
        return super().default(value)

    def _check(self, v):
        if not isinstance(v, ObjectId):
            raise TypeMismatch(f"Expected an ObjectId, got {describe(v)}")
        return v


class DecimalNode(SchemaNode):
    kind = "decimal"

    def _check(self, v):
        if isinstance(v, Decimal128):
            return v
        if isinstance(v, Decimal):
            try:
                return Decimal128(v)
            except ArithmeticError:
                raise ConstraintViolation(f"Value {v} cannot be represented as a Decimal128")
        raise TypeMismatch(f"Expected a Decimal128, got {describe(v)}")


def _to_bytes(v) -> bytes:
    # Binary subclasses bytes, so this covers tagged values as well
    if isinstance(v, (bytes, bytearray, memoryview)):
        return bytes(v)
    if isinstance(v, list) and all(isinstance(x, int) and not isinstance(x, bool) and 0 <= x <= 255 for x in v):
        return bytes(v)
    raise TypeMismatch(f"Expected a (Binary | bytes), got {describe(v)}")


class BinaryNode(SchemaNode):
    kind = "binData"

    def __init__(self):
        super().__init__()
        self._checks["subtype"] = BINARY_SUBTYPE

    def min(self, n: int) -> "BinaryNode":
        return self._with_checks(min=n)

    def max(self, n: int) -> "BinaryNode":
        return self._with_checks(max=n)

    def bson_subtype(self, subtype: int) -> "BinaryNode":
        if subtype not in BSON_SUBTYPES:
            raise SchemaError(f"Invalid BSON subtype argument: {subtype}")
        return self._with_checks(subtype=subtype)

    def _check(self, v):
        buf = _to_bytes(v)

        checks = self._checks
        if "min" in checks and len(buf) < checks["min"]:
            raise ConstraintViolation(f"Buffer is too short (min {checks['min']})")
        if "max" in checks and len(buf) > checks["max"]:
            raise ConstraintViolation(f"Buffer is too long (max {checks['max']})")

        if isinstance(v, Binary):
            if v.subtype != checks["subtype"]:
                raise ConstraintViolation(f"Invalid Binary subtype: expected {checks['subtype']}, got {v.subtype}")
            return v

        return Binary(buf, checks["subtype"])
