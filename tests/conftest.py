"""
Shared pytest fixtures for mongodb_schema_toolkit tests.

FakeIndexStore keeps indexes in memory and reports them back the way
MongoDB's listIndexes does (generated names, `_id_` index, text indexes as
`_fts`/`_ftsx` with weights), so sync can be tested without a server.
"""

from typing import Dict, List

import pytest

from mongodb_schema_toolkit.exceptions import CollectionNotFound, IndexSyncError
from mongodb_schema_toolkit.indexes import IndexStore, declaration_from_index_info
from mongodb_schema_toolkit.models import IndexDeclaration


def _index_name(key: Dict) -> str:
    return "_".join(f"{field}_{direction}" for field, direction in key.items())


class FakeIndexStore(IndexStore):
    def __init__(self):
        self.collections: Dict[str, List[Dict]] = {}
        self.calls: List[tuple] = []
        # Set to a list of declarations to simulate a concurrent creator
        self.race_with: List[IndexDeclaration] = []

    def add_live_index(self, collection_name: str, key: Dict, **options):
        """Adds an index as the server would report it."""
        indexes = self.collections.setdefault(collection_name, [self._id_index()])
        info = {"v": 2, "name": options.pop("name", _index_name(key)), **options}
        text_fields = [field for field, direction in key.items() if direction == "text"]
        if text_fields:
            info["key"] = {"_fts": "text", "_ftsx": 1}
            info.setdefault("weights", {field: 1 for field in text_fields})
            info.setdefault("default_language", "english")
            info.setdefault("language_override", "language")
            info["textIndexVersion"] = 3
        else:
            info["key"] = dict(key)
        indexes.append(info)

    @staticmethod
    def _id_index():
        return {"v": 2, "key": {"_id": 1}, "name": "_id_"}

    def collection_exists(self, collection_name: str) -> bool:
        return collection_name in self.collections

    def create_collection(self, collection_name: str) -> None:
        self.calls.append(("create_collection", collection_name))
        self.collections.setdefault(collection_name, [self._id_index()])

    def list_indexes(self, collection_name: str) -> List[IndexDeclaration]:
        self.calls.append(("list_indexes", collection_name))
        if collection_name not in self.collections:
            raise CollectionNotFound(f"Collection '{collection_name}' does not exist.")
        return [declaration_from_index_info(info) for info in self.collections[collection_name]]

    def create_indexes(self, collection_name: str, declarations: List[IndexDeclaration]) -> None:
        self.calls.append(("create_indexes", collection_name))
        for declaration in declarations:
            if self.race_with:
                winner = self.race_with.pop(0)
                self.add_live_index(collection_name, dict(winner.key), **winner.options)
                raise IndexSyncError("Index already exists with a different name")
            self.add_live_index(collection_name, dict(declaration.key), **declaration.options)

    def drop_index(self, collection_name: str, name: str) -> None:
        self.calls.append(("drop_index", collection_name, name))
        indexes = self.collections.get(collection_name, [])
        self.collections[collection_name] = [info for info in indexes if info["name"] != name]

    def live_names(self, collection_name: str) -> List[str]:
        return [info["name"] for info in self.collections.get(collection_name, [])]


@pytest.fixture
def store():
    return FakeIndexStore()
