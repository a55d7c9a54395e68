from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .base import ArrayNode, SchemaNode, check_index_options
from .bsons import BinaryNode, DecimalNode, ObjectIdNode
from .composites import ObjectNode, TupleNode, UnionNode
from .exceptions import SchemaError, ValidationError
from .indexes import collect_indexes
from .models import IndexDeclaration
from .primitives import BooleanNode, DateNode, NumberNode, StringNode
from .utils import INDEX_DIRECTIONS, TIMESTAMP_FIELDS
from .validate_update_schema import validate_update


def _touches_updated_at(update_doc: Dict[str, Any]) -> bool:
    # two operators on one path are rejected by the server
    for operator, payload in update_doc.items():
        if operator == "$currentDate":
            continue
        if "updatedAt" in payload:
            return True
        if operator == "$rename" and "updatedAt" in payload.values():
            return True
    return False


class DocumentSchema(ObjectNode):
    """
    The schema that goes to a collection.

    Behaves as an object node, plus compound index declarations and
    document-wide options. Like every node it is immutable: `add_index()` and
    `with_timestamps()` return new schemas.
    """
    kind = "document"
    is_document_schema = True

    def __init__(self, shape: Dict[str, SchemaNode]):
        super().__init__(shape)
        self._root_indexes: List[IndexDeclaration] = []
        self._options: Dict[str, Any] = {}
        self._collected_indexes: Optional[List[IndexDeclaration]] = None

    def _copy(self):
        clone = super()._copy()
        clone._root_indexes = list(self._root_indexes)
        clone._options = dict(self._options)
        clone._collected_indexes = None
        return clone

    @property
    def options(self) -> Dict[str, Any]:
        return dict(self._options)

    @property
    def root_indexes(self) -> List[IndexDeclaration]:
        return list(self._root_indexes)

    def add_index(self, keys: Dict[str, Any], **options) -> "DocumentSchema":
        """
        Declares a (compound) index, e.g. add_index({"userId": 1, "ts": -1}, unique=True).

        Declarations accumulate; identical duplicates are collapsed at sync time.
        """
        if not keys:
            raise SchemaError("An index needs at least one key")
        for field, direction in keys.items():
            if direction not in INDEX_DIRECTIONS:
                raise SchemaError(f"Invalid direction {direction!r} for index key '{field}'")
        clone = self._copy()
        clone._root_indexes.append(IndexDeclaration(key=dict(keys), options=check_index_options(options)))
        return clone

    def with_timestamps(self) -> "DocumentSchema":
        """Adds auto-managed `createdAt`/`updatedAt` date fields."""
        clone = self._copy()
        clone._options["with_timestamps"] = True
        return clone

    def _check(self, v):
        self._check_mapping(v)
        out = {}
        # _id is store-assigned identity; only validated when the shape declares it
        if "_id" in v and "_id" not in self._shape:
            out["_id"] = v["_id"]

        out.update(super()._check(v))

        if self._options.get("with_timestamps"):
            now = datetime.now(timezone.utc)
            for field in TIMESTAMP_FIELDS:
                if field in self._shape:
                    continue
                if field in v and v[field] is not None:
                    try:
                        out[field] = DateNode().parse(v[field])
                    except ValidationError as err:
                        raise err.prefixed(field) from err
                else:
                    out[field] = now
        return out

    def validate_update(self, update_doc: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validates an update document against this schema and returns the
        processed copy to send to the store.

        With timestamps on, `$currentDate.updatedAt` is added unless another
        operator already writes `updatedAt`.
        """
        processed = validate_update(update_doc, self._shape, self._options)
        if self._options.get("with_timestamps") and not _touches_updated_at(processed):
            processed["$currentDate"] = {**processed.get("$currentDate", {}), "updatedAt": True}
        return processed

    def collect_indexes(self) -> List[IndexDeclaration]:
        """
        Gathers every index declared on this schema, memoized per instance.

        See indexes.collect_indexes().
        """
        if self._collected_indexes is None:
            self._collected_indexes = collect_indexes(self)
        return list(self._collected_indexes)


class SchemaBuilder:
    """Entry point for building schema nodes: `M.schema({"name": M.string()})`."""

    def number(self) -> NumberNode:
        return NumberNode()

    def string(self) -> StringNode:
        return StringNode()

    def boolean(self) -> BooleanNode:
        return BooleanNode()

    def date(self) -> DateNode:
        return DateNode()

    def object_id(self) -> ObjectIdNode:
        return ObjectIdNode()

    def decimal(self) -> DecimalNode:
        return DecimalNode()

    def binary(self) -> BinaryNode:
        return BinaryNode()

    def object(self, shape: Dict[str, SchemaNode]) -> ObjectNode:
        """An embedded document's schema representation."""
        return ObjectNode(shape)

    def array(self, item: SchemaNode) -> ArrayNode:
        return ArrayNode(item)

    def tuple(self, items: List[SchemaNode]) -> TupleNode:
        """Fixed-position array (tuple)."""
        return TupleNode(items)

    def fixed_array_of(self, *items: SchemaNode) -> TupleNode:
        """Same thing as `.tuple()`, but takes the items as args."""
        return TupleNode(list(items))

    def union(self, *candidates: SchemaNode) -> UnionNode:
        return UnionNode(list(candidates))

    def one_of(self, candidates: List[SchemaNode]) -> UnionNode:
        """Similar to `.union()`, but takes a list."""
        return UnionNode(candidates)

    def schema(self, shape: Dict[str, SchemaNode]) -> DocumentSchema:
        """A collection's schema representation."""
        return DocumentSchema(shape)


M = SchemaBuilder()
