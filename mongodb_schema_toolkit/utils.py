import re
from datetime import datetime
from decimal import Decimal
from bson import ObjectId, DBRef, MinKey, MaxKey, Timestamp, Int64, Decimal128, Binary, Code, Regex
from pymongo import ASCENDING, DESCENDING, HASHED, TEXT
# Use Mapping, Sequence from collections.abc for broader compatibility
from collections.abc import Mapping, Sequence

# Constants
# See: https://www.mongodb.com/docs/manual/reference/operator/update/
UPDATE_OPERATORS = (
    # Fields
    '$currentDate', '$inc', '$min', '$max', '$mul', '$rename',
    '$set', '$setOnInsert', '$unset',
    # Array
    '$addToSet', '$pop', '$pull', '$push', '$pullAll',
    # Bitwise
    '$bit',
)

INDEX_DIRECTIONS = (ASCENDING, DESCENDING, HASHED, TEXT)

# Field names managed by DocumentSchema.with_timestamps()
TIMESTAMP_FIELDS = ('createdAt', 'updatedAt')

# Numeric array index or positional update operator ($, $[], $[identifier])
ARRAY_SEGMENT_REGEX = re.compile(r'^(\d+|\$|\$\[\w*\])$')


def get_bson_type_name(value):
    """Maps Python types to BSON type names for clarity."""
    if isinstance(value, str): return "string"
    if isinstance(value, bool): return "bool"
    if isinstance(value, Int64): return "long"
    if isinstance(value, int): return "int"
    if isinstance(value, float): return "double"
    if isinstance(value, (Decimal128, Decimal)): return "decimal"
    if isinstance(value, datetime): return "date"
    # Binary is a bytes subclass, check it before Sequence
    if isinstance(value, (bytes, bytearray, memoryview, Binary)): return "binData"
    # Use Sequence check for list-like, exclude str/bytes
    if isinstance(value, Sequence): return "array"
    if isinstance(value, Mapping): return "object" # Use Mapping check for dict-like
    if isinstance(value, ObjectId): return "objectId"
    if isinstance(value, DBRef): return "dbRef"
    if isinstance(value, Timestamp): return "timestamp"
    if isinstance(value, type(None)): return "null"
    if isinstance(value, MinKey): return "minKey"
    if isinstance(value, MaxKey): return "maxKey"
    if isinstance(value, Code): return "javascript"
    if isinstance(value, Regex) or isinstance(value, re.Pattern): return "regex"
    return type(value).__name__


def is_number(value):
    """True for int/float values (BSON int, long, double), never for bool."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_array(value):
    """True for list-like values, excluding strings and byte buffers."""
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray, memoryview))
