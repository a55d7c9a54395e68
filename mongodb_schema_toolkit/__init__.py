from .toolkit import SchemaToolkit
from .collection import CollectionModel
from .schema import DocumentSchema, SchemaBuilder, M
from .base import ABSENT
from .indexes import IndexStore, PymongoIndexStore, collect_indexes, diff_indexes, sync_indexes
from .validate_update_schema import validate_update
from .paths import resolve_path
from .models import IndexDeclaration, SyncResult
from .exceptions import (
    SchemaToolkitError, ConfigurationError, SchemaError, ExecutionError, CollectionNotFound, IndexSyncError,
    ValidationError, TypeMismatch, ConstraintViolation, MissingRequiredField, UnknownField, StructuralMismatch,
    InvalidOperatorPayload, UnknownOperator, CustomValidationFailed,
)
from pymongo import ASCENDING, DESCENDING, HASHED, TEXT # Re-export index directions

__version__ = "0.1.0"

__all__ = [
    "SchemaToolkit",
    "CollectionModel",
    "DocumentSchema",
    "SchemaBuilder",
    "M",
    "ABSENT",
    "IndexStore",
    "PymongoIndexStore",
    "collect_indexes",
    "diff_indexes",
    "sync_indexes",
    "validate_update",
    "resolve_path",
    "IndexDeclaration",
    "SyncResult",
    "SchemaToolkitError",
    "ConfigurationError",
    "SchemaError",
    "ExecutionError",
    "CollectionNotFound",
    "IndexSyncError",
    "ValidationError",
    "TypeMismatch",
    "ConstraintViolation",
    "MissingRequiredField",
    "UnknownField",
    "StructuralMismatch",
    "InvalidOperatorPayload",
    "UnknownOperator",
    "CustomValidationFailed",
    "ASCENDING",
    "DESCENDING",
    "HASHED",
    "TEXT",
]
