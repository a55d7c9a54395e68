import sys
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import OperationFailure
from pymongo.results import InsertManyResult, InsertOneResult, UpdateResult

from .exceptions import ExecutionError, InvalidOperatorPayload, ValidationError
from .indexes import IndexStore, PymongoIndexStore, sync_indexes
from .models import SyncResult
from .schema import DocumentSchema


class CollectionModel:
    """
    A collection bound to a schema.

    Every write is validated against the schema before it is forwarded to
    pymongo. With `auto_index` on, the collection's indexes are synced once,
    right before the first write.
    """

    def __init__(
        self,
        name: str,
        schema: DocumentSchema,
        get_db: Callable[[], Database],
        auto_index: bool = True,
        index_store: Optional[IndexStore] = None,
    ):
        self.name = name
        self.schema = schema
        self.auto_index = auto_index
        self._get_db = get_db
        self._index_store = index_store
        self._indexes_synced = False

    def get_collection(self) -> Collection:
        return self._get_db()[self.name]

    def _get_index_store(self) -> IndexStore:
        if self._index_store is None:
            self._index_store = PymongoIndexStore(self._get_db())
        return self._index_store

    # --- Validation ---

    def parse(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        """Validates a full document. Raises ValidationError on the first problem."""
        return self.schema.parse(doc)

    def validate_update(self, update: Dict[str, Any]) -> Dict[str, Any]:
        """Validates an update document and returns the processed copy."""
        return self.schema.validate_update(update)

    # --- Indexes ---

    def sync_indexes(self, force: bool = False) -> SyncResult:
        """
        Syncs the collection's indexes with the schema.

        Once a sync has succeeded, later calls return an all-zero result
        without touching the store unless `force` is set.
        """
        if self._indexes_synced and not force:
            return SyncResult()
        result = sync_indexes(self._get_index_store(), self.name, self.schema)
        self._indexes_synced = True
        return result

    def _ensure_indexes(self):
        if self.auto_index:
            self.sync_indexes()

    # --- Writes ---

    def insert_one(self, doc: Dict[str, Any], **kwargs) -> InsertOneResult:
        parsed = self.parse(doc)
        self._ensure_indexes()
        print(f"Inserting one document into '{self.name}'")
        try:
            return self.get_collection().insert_one(parsed, **kwargs)
        except OperationFailure as e:
            msg = f"MongoDB operation failed during insert into '{self.name}': {e}"
            print(msg, file=sys.stderr)
            raise ExecutionError(msg) from e

    def insert_many(self, docs: List[Dict[str, Any]], **kwargs) -> InsertManyResult:
        parsed = []
        for i, doc in enumerate(docs):
            try:
                parsed.append(self.parse(doc))
            except ValidationError as err:
                raise err.prefixed(f"[{i}]", " ", key=i) from err
        self._ensure_indexes()
        print(f"Inserting {len(parsed)} documents into '{self.name}'")
        try:
            return self.get_collection().insert_many(parsed, **kwargs)
        except OperationFailure as e:
            msg = f"MongoDB operation failed during insert into '{self.name}': {e}"
            print(msg, file=sys.stderr)
            raise ExecutionError(msg) from e

    def _prepare_update(self, update: Dict[str, Any], upsert: bool) -> Dict[str, Any]:
        processed = self.validate_update(update)
        if not processed:
            raise InvalidOperatorPayload("Update document must contain at least one operator with fields to update")
        if upsert and self.schema.options.get("with_timestamps"):
            already_set = {**processed.get("$set", {}), **processed.get("$setOnInsert", {})}
            if "createdAt" not in already_set:
                processed["$setOnInsert"] = {
                    **processed.get("$setOnInsert", {}),
                    "createdAt": datetime.now(timezone.utc),
                }
        return processed

    def update_one(self, filter: Dict[str, Any], update: Dict[str, Any], upsert: bool = False, **kwargs) -> UpdateResult:
        processed = self._prepare_update(update, upsert)
        self._ensure_indexes()
        print(f"Updating one document in '{self.name}'")
        print(f"  Filter: {filter}")
        print(f"  Update: {processed}")
        try:
            return self.get_collection().update_one(filter, processed, upsert=upsert, **kwargs)
        except OperationFailure as e:
            msg = f"MongoDB operation failed during update of '{self.name}': {e}"
            print(msg, file=sys.stderr)
            raise ExecutionError(msg) from e

    def update_many(self, filter: Dict[str, Any], update: Dict[str, Any], upsert: bool = False, **kwargs) -> UpdateResult:
        processed = self._prepare_update(update, upsert)
        self._ensure_indexes()
        print(f"Updating documents in '{self.name}'")
        print(f"  Filter: {filter}")
        print(f"  Update: {processed}")
        try:
            return self.get_collection().update_many(filter, processed, upsert=upsert, **kwargs)
        except OperationFailure as e:
            msg = f"MongoDB operation failed during update of '{self.name}': {e}"
            print(msg, file=sys.stderr)
            raise ExecutionError(msg) from e

    def __repr__(self):
        return f"CollectionModel({self.name!r})"
