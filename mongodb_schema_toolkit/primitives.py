import math
import re
from datetime import datetime, timedelta, timezone
from typing import List, Union

from .base import SchemaNode, describe
from .exceptions import ConstraintViolation, TypeMismatch
from .utils import is_number

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class NumberNode(SchemaNode):
    kind = "number"

    def min(self, n) -> "NumberNode":
        return self._with_checks(min=n)

    def max(self, n) -> "NumberNode":
        return self._with_checks(max=n)

    def enum(self, values: List[Union[int, float]]) -> "NumberNode":
        return self._with_checks(enum=list(values))

    def to_fixed(self, digits: int) -> "NumberNode":
        """Round parsed values to `digits` decimal places."""
        return self._with_checks(to_fixed=digits)

    def _check(self, v):
        if not is_number(v):
            raise TypeMismatch(f"Expected a number, got {describe(v)}")

        checks = self._checks
        # constraints apply to the stored (rounded) value
        if "to_fixed" in checks:
            v = round(v, checks["to_fixed"])
        if "min" in checks and v < checks["min"]:
            raise ConstraintViolation(f"Value must be greater than or equal to {checks['min']}")
        if "max" in checks and v > checks["max"]:
            raise ConstraintViolation(f"Value must be less than or equal to {checks['max']}")
        if "enum" in checks and v not in checks["enum"]:
            raise ConstraintViolation(f"Value must be one of [{', '.join(str(e) for e in checks['enum'])}]")
        return v


class StringNode(SchemaNode):
    kind = "string"

    def min(self, n: int) -> "StringNode":
        return self._with_checks(min=n)

    def max(self, n: int) -> "StringNode":
        return self._with_checks(max=n)

    def enum(self, values: List[str]) -> "StringNode":
        return self._with_checks(enum=list(values))

    def match(self, pattern) -> "StringNode":
        """Require the value to match `pattern` (a string or compiled regex) anywhere."""
        return self._with_checks(match=re.compile(pattern))

    def lowercase(self) -> "StringNode":
        return self._with_checks(lowercase=True)

    def uppercase(self) -> "StringNode":
        return self._with_checks(uppercase=True)

    def trim(self) -> "StringNode":
        return self._with_checks(trim=True)

    def _check(self, v):
        if not isinstance(v, str):
            raise TypeMismatch(f"Expected a string, got {describe(v)}")

        checks = self._checks
        if checks.get("lowercase"): v = v.lower()
        if checks.get("uppercase"): v = v.upper()
        if checks.get("trim"): v = v.strip()

        if "min" in checks and len(v) < checks["min"]:
            raise ConstraintViolation(f"Value must be longer than or equal to {checks['min']} characters")
        if "max" in checks and len(v) > checks["max"]:
            raise ConstraintViolation(f"Value must be shorter than or equal to {checks['max']} characters")
        if "enum" in checks and v not in checks["enum"]:
            raise ConstraintViolation(f"Value must be one of [{', '.join(checks['enum'])}]")
        if "match" in checks and not checks["match"].search(v):
            raise ConstraintViolation(f"Value does not follow pattern {checks['match'].pattern}")
        return v


class BooleanNode(SchemaNode):
    kind = "boolean"

    def _check(self, v):
        if not isinstance(v, bool):
            raise TypeMismatch(f"Expected a boolean, got {describe(v)}")
        return v


def to_utc_datetime(v) -> datetime:
    """
    Converts a datetime, an ISO 8601 string or epoch milliseconds to an aware UTC datetime.

    Naive datetimes are taken as UTC, matching how pymongo decodes BSON dates.
    Raises TypeMismatch for other types and ConstraintViolation for values
    that do not describe a valid instant.
    """
    if isinstance(v, datetime):
        out = v
    elif isinstance(v, str):
        text = v.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            out = datetime.fromisoformat(text)
        except ValueError:
            raise ConstraintViolation("Invalid date")
    elif is_number(v):
        if math.isnan(v) or math.isinf(v):
            raise ConstraintViolation("Invalid date")
        try:
            out = EPOCH + timedelta(milliseconds=v)
        except OverflowError:
            raise ConstraintViolation("Invalid date")
    else:
        raise TypeMismatch(f"Expected a valid (date | date string | number), got {describe(v)}")

    if out.tzinfo is None:
        return out.replace(tzinfo=timezone.utc)
    return out.astimezone(timezone.utc)


class DateNode(SchemaNode):
    kind = "date"

    def min(self, d) -> "DateNode":
        return self._with_checks(min=to_utc_datetime(d))

    def max(self, d) -> "DateNode":
        return self._with_checks(max=to_utc_datetime(d))

    def ttl(self, seconds: int) -> "DateNode":
        """
        Create a TTL index on the field.

        Args:
            seconds (int): The TTL index expireAfterSeconds value.
        """
        return self._with_index(self._index_direction or 1, expireAfterSeconds=seconds)

    def expires(self, seconds: int) -> "DateNode":
        """Alias to `.ttl()`"""
        return self.ttl(seconds)

    def _check(self, v):
        out = to_utc_datetime(v)

        checks = self._checks
        if "min" in checks and out < checks["min"]:
            raise ConstraintViolation(f"Value must be after or equal to {checks['min'].isoformat()}")
        if "max" in checks and out > checks["max"]:
            raise ConstraintViolation(f"Value must be before or equal to {checks['max'].isoformat()}")
        return out
