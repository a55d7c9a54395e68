import hashlib
import sys
from typing import Any, Dict, List, NamedTuple, Optional

from bson import json_util
from pymongo import IndexModel, TEXT
from pymongo.database import Database
from pymongo.errors import CollectionInvalid, OperationFailure

from .base import ArrayNode, SchemaNode, WrapperNode, unwrap
from .composites import ObjectNode, TupleNode, UnionNode
from .exceptions import CollectionNotFound, IndexSyncError
from .models import IndexDeclaration, SyncResult

ID_INDEX_NAME = "_id_"
NAMESPACE_NOT_FOUND = 26

# Options that make two indexes on the same key different indexes
IDENTITY_OPTIONS = (
    "unique", "sparse", "partialFilterExpression", "expireAfterSeconds",
    "default_language", "weights", "language_override",
)
_SERVER_DEFAULTS = {
    "unique": False,
    "sparse": False,
    "default_language": "english",
    "language_override": "language",
}
# Reported by listIndexes but never part of a declaration
_LIVE_ONLY_FIELDS = ("v", "key", "ns", "textIndexVersion", "2dsphereIndexVersion")


# --- Collection ---

def _index_meta(node: SchemaNode):
    """First index declaration found from the outermost wrapper inwards."""
    while True:
        meta = node.get_index_meta()
        if meta is not None:
            return meta
        if not isinstance(node, WrapperNode):
            return None
        node = node.inner


def collect_indexes(schema) -> List[IndexDeclaration]:
    """
    Gathers every index a document schema declares.

    Root compound declarations come first, verbatim, followed by one
    single-field declaration per indexed node in field order. Nested object
    fields use dot notation ("address.zip"); array elements and union
    candidates share the path of their field; tuple positions append their
    index ("point.0").
    """
    collected = list(schema.root_indexes)

    def walk(node: SchemaNode, path: str):
        meta = _index_meta(node)
        if meta is not None:
            direction, options = meta
            collected.append(IndexDeclaration(key={path: direction}, options=options))

        concrete = unwrap(node)
        if isinstance(concrete, ObjectNode):
            walk_shape(concrete.get_shape(), path)
        elif isinstance(concrete, ArrayNode):
            walk(concrete.element, path)
        elif isinstance(concrete, TupleNode):
            for i, item in enumerate(concrete.get_items()):
                walk(item, f"{path}.{i}")
        elif isinstance(concrete, UnionNode):
            for candidate in concrete.get_candidates():
                walk(candidate, path)

    def walk_shape(shape: Dict[str, SchemaNode], parent: str):
        for key, node in shape.items():
            walk(node, f"{parent}.{key}" if parent else key)

    walk_shape(schema.get_shape(), "")
    return collected


# --- Canonical form ---

def _normalize_number(value):
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def canonical_declaration(declaration: IndexDeclaration) -> Dict[str, Any]:
    """
    Reduces a declaration to the shape used for equality.

    Key order is kept except that text fields are collapsed into one sorted
    block, since the server stores them that way. Only identity options are
    kept and server defaults are removed, so a declared index and the index
    the server reports back compare equal.
    """
    text_fields = sorted(field for field, direction in declaration.key.items() if direction == TEXT)
    key = []
    for field, direction in declaration.key.items():
        if direction != TEXT:
            key.append([field, _normalize_number(direction)])
        elif text_fields:
            key.extend([name, TEXT] for name in text_fields)
            text_fields = []

    options = {}
    for name in IDENTITY_OPTIONS:
        if name not in declaration.options:
            continue
        value = declaration.options[name]
        if name in _SERVER_DEFAULTS and value == _SERVER_DEFAULTS[name]:
            continue
        if name == "weights":
            value = {field: _normalize_number(weight) for field, weight in value.items()}
            if all(weight == 1 for weight in value.values()):
                continue
        options[name] = _normalize_number(value)

    return {"key": key, "options": options}


def _digest(value) -> str:
    return hashlib.sha256(json_util.dumps(value, sort_keys=True).encode("utf-8")).hexdigest()


def declaration_hash(declaration: IndexDeclaration) -> str:
    """SHA-256 of the canonical form. Option order never matters; key order does."""
    return _digest(canonical_declaration(declaration))


def declaration_from_index_info(info: Dict[str, Any]) -> IndexDeclaration:
    """
    Converts one listIndexes entry into a declaration.

    A text index is reported as {"_fts": "text", "_ftsx": 1} with the real
    fields in `weights`; those fields are put back into the key. The index
    name is kept in the options for dropping.
    """
    key = {}
    for field, direction in info["key"].items():
        if field == "_fts":
            for text_field in sorted(info.get("weights", {})):
                key[text_field] = TEXT
        elif field == "_ftsx":
            continue
        else:
            key[field] = _normalize_number(direction)
    options = {name: value for name, value in info.items() if name not in _LIVE_ONLY_FIELDS}
    return IndexDeclaration(key=key, options=options)


def _describe_declaration(declaration: IndexDeclaration) -> str:
    canonical = canonical_declaration(declaration)
    key = ", ".join(f"{field}: {direction}" for field, direction in canonical["key"])
    if canonical["options"]:
        return f"{{{key}}} {canonical['options']}"
    return f"{{{key}}}"


def _is_id_index(declaration: IndexDeclaration) -> bool:
    return declaration.options.get("name") == ID_INDEX_NAME or dict(declaration.key) == {"_id": 1}


# --- Diff ---

class IndexDiff(NamedTuple):
    create: List[IndexDeclaration]
    drop: List[IndexDeclaration]
    unchanged: List[IndexDeclaration]


def dedupe_wanted(wanted: List[IndexDeclaration]) -> List[IndexDeclaration]:
    """
    Collapses identical declarations into one.

    Raises:
        IndexSyncError: Two declarations share a key but differ in options.
    """
    by_key: Dict[str, Dict[str, Any]] = {}
    out = []
    for declaration in wanted:
        canonical = canonical_declaration(declaration)
        key_hash = _digest(canonical["key"])
        if key_hash in by_key:
            if by_key[key_hash] != canonical:
                raise IndexSyncError(
                    f"Conflicting index declarations for key {_describe_declaration(declaration)}: "
                    f"options {by_key[key_hash]['options']} and {canonical['options']}"
                )
            continue
        by_key[key_hash] = canonical
        out.append(declaration)
    return out


def diff_indexes(wanted: List[IndexDeclaration], live: List[IndexDeclaration]) -> IndexDiff:
    """
    Reconciles the schema-declared indexes against the store-reported ones.

    The primary key index is never part of the result.
    """
    wanted = dedupe_wanted(wanted)
    live_by_hash = {}
    for declaration in live:
        if _is_id_index(declaration):
            continue
        live_by_hash[declaration_hash(declaration)] = declaration

    create, unchanged = [], []
    wanted_hashes = set()
    for declaration in wanted:
        if _is_id_index(declaration):
            continue
        digest = declaration_hash(declaration)
        wanted_hashes.add(digest)
        if digest in live_by_hash:
            unchanged.append(declaration)
        else:
            create.append(declaration)

    drop = [declaration for digest, declaration in live_by_hash.items() if digest not in wanted_hashes]
    return IndexDiff(create=create, drop=drop, unchanged=unchanged)


def find_live_index(live: List[IndexDeclaration], declaration: IndexDeclaration) -> Optional[IndexDeclaration]:
    """Returns the live index equal to `declaration`, if any."""
    digest = declaration_hash(declaration)
    for candidate in live:
        if declaration_hash(candidate) == digest:
            return candidate
    return None


# --- Store ---

class IndexStore:
    """
    The collaborator that owns the indexes of a database.

    list_indexes() raises CollectionNotFound when the collection does not
    exist yet. Every other store failure is raised as IndexSyncError.
    """

    def list_indexes(self, collection_name: str) -> List[IndexDeclaration]:
        raise NotImplementedError

    def create_indexes(self, collection_name: str, declarations: List[IndexDeclaration]) -> None:
        raise NotImplementedError

    def drop_index(self, collection_name: str, name: str) -> None:
        raise NotImplementedError

    def collection_exists(self, collection_name: str) -> bool:
        raise NotImplementedError

    def create_collection(self, collection_name: str) -> None:
        raise NotImplementedError


class PymongoIndexStore(IndexStore):
    """IndexStore over a pymongo Database."""

    def __init__(self, db: Database):
        self._db = db

    def collection_exists(self, collection_name: str) -> bool:
        try:
            return collection_name in self._db.list_collection_names(filter={"name": collection_name})
        except OperationFailure as e:
            raise IndexSyncError(f"Failed to list collections: {e}") from e

    def create_collection(self, collection_name: str) -> None:
        try:
            self._db.create_collection(collection_name)
        except CollectionInvalid:
            # Created concurrently; the collection exists either way
            print(f"Collection '{collection_name}' already exists.")
        except OperationFailure as e:
            raise IndexSyncError(f"Failed to create collection '{collection_name}': {e}") from e

    def list_indexes(self, collection_name: str) -> List[IndexDeclaration]:
        # pymongo reports a missing collection as an empty index list
        if not self.collection_exists(collection_name):
            raise CollectionNotFound(f"Collection '{collection_name}' does not exist.")
        try:
            infos = list(self._db[collection_name].list_indexes())
        except OperationFailure as e:
            if e.code == NAMESPACE_NOT_FOUND:
                raise CollectionNotFound(f"Collection '{collection_name}' does not exist.") from e
            raise IndexSyncError(f"Failed to list indexes of '{collection_name}': {e}") from e
        return [declaration_from_index_info(dict(info)) for info in infos]

    def create_indexes(self, collection_name: str, declarations: List[IndexDeclaration]) -> None:
        models = [IndexModel(list(d.key.items()), **d.options) for d in declarations]
        try:
            self._db[collection_name].create_indexes(models)
        except OperationFailure as e:
            raise IndexSyncError(f"Failed to create indexes on '{collection_name}': {e}") from e

    def drop_index(self, collection_name: str, name: str) -> None:
        try:
            self._db[collection_name].drop_index(name)
        except OperationFailure as e:
            raise IndexSyncError(f"Failed to drop index '{name}' on '{collection_name}': {e}") from e


# --- Sync ---

def _list_or_create(store: IndexStore, collection_name: str) -> List[IndexDeclaration]:
    try:
        return store.list_indexes(collection_name)
    except CollectionNotFound:
        print(f"Collection '{collection_name}' does not exist yet. Creating it...")
        store.create_collection(collection_name)
        return []


def sync_indexes(store: IndexStore, collection_name: str, schema) -> SyncResult:
    """
    Makes the indexes of a collection match the ones its schema declares.

    Indexes missing from the store are created, indexes the schema no longer
    declares are dropped (never `_id_`), and the rest are left alone, so a
    second run against an unchanged schema creates and drops nothing.

    Creation is not atomic with the listing: if a concurrent caller created
    the same index first, the failure is folded into `unchanged`. A
    different index on the same key is raised.

    Returns:
        SyncResult: created/dropped/unchanged counts.

    Raises:
        IndexSyncError: Conflicting declarations or a store failure.
    """
    print(f"Syncing indexes for collection '{collection_name}'...")
    wanted = schema.collect_indexes()
    # Validate declarations before the store is touched
    dedupe_wanted(wanted)

    live = _list_or_create(store, collection_name)
    plan = diff_indexes(wanted, live)
    result = SyncResult(unchanged=len(plan.unchanged))

    # Drops go first: a changed index keeps its key, and the old one must be gone
    for declaration in plan.drop:
        name = declaration.options.get("name")
        print(f"  Dropping index '{name}' {_describe_declaration(declaration)}")
        try:
            store.drop_index(collection_name, name)
        except IndexSyncError:
            remaining = {d.options.get("name") for d in _list_or_create(store, collection_name)}
            if name in remaining:
                print(f"Error: could not drop index '{name}' on '{collection_name}'.", file=sys.stderr)
                raise
            print(f"  Index '{name}' was already dropped.")
        result.dropped += 1

    for declaration in plan.create:
        print(f"  Creating index {_describe_declaration(declaration)}")
        try:
            store.create_indexes(collection_name, [declaration])
        except IndexSyncError as e:
            if find_live_index(_list_or_create(store, collection_name), declaration) is not None:
                print(f"  Index {_describe_declaration(declaration)} was created concurrently. Treating as unchanged.")
                result.unchanged += 1
                continue
            msg = f"Conflicting index for {_describe_declaration(declaration)} on '{collection_name}': {e}"
            print(msg, file=sys.stderr)
            raise IndexSyncError(msg) from e
        result.created += 1

    print(
        f"Index sync for '{collection_name}' complete: "
        f"{result.created} created, {result.dropped} dropped, {result.unchanged} unchanged."
    )
    return result
