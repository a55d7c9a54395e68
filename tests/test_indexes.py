import pytest

from mongodb_schema_toolkit import M
from mongodb_schema_toolkit.exceptions import IndexSyncError
from mongodb_schema_toolkit.indexes import (
    canonical_declaration, declaration_from_index_info, declaration_hash, diff_indexes, sync_indexes,
)
from mongodb_schema_toolkit.models import IndexDeclaration


def _keys(declarations):
    return [d.key for d in declarations]


class TestCollect:
    def test_field_and_root_declarations(self):
        schema = M.schema({
            "username": M.string().unique_index(),
            "age": M.number().index(-1),
            "address": M.object({"zip": M.string().index()}).optional(),
            "status": M.string(),
        }).add_index({"username": 1, "age": -1})

        collected = schema.collect_indexes()
        assert _keys(collected) == [
            {"username": 1, "age": -1},
            {"username": 1},
            {"age": -1},
            {"address.zip": 1},
        ]
        assert collected[1].options == {"unique": True}

    def test_wrapped_arrays_tuples_and_unions(self):
        schema = M.schema({
            "tags": M.array(M.string().index()).optional(),
            "labels": M.array(M.string()).hashed_index(),
            "point": M.tuple([M.number().index(), M.number()]),
            "ref": M.union(M.string().sparse_index(), M.number()),
            "items": M.array(M.object({"sku": M.string().unique_index()})),
            "title": M.string().text_index(),
            "expires": M.date().ttl(60).nullable(),
        })
        collected = schema.collect_indexes()
        assert _keys(collected) == [
            {"tags": 1},
            {"labels": "hashed"},
            {"point.0": 1},
            {"ref": 1},
            {"items.sku": 1},
            {"title": "text"},
            {"expires": 1},
        ]
        assert collected[3].options == {"sparse": True}
        assert collected[-1].options == {"expireAfterSeconds": 60}

    def test_collection_is_memoized(self):
        schema = M.schema({"a": M.string().index()})
        assert schema.collect_indexes() == schema.collect_indexes()
        assert schema.collect_indexes() is not schema.collect_indexes()
        assert schema._collected_indexes is not None

    def test_index_builders_combine(self):
        node = M.string().index(-1).unique_index().sparse_index()
        assert node.get_index_meta() == (-1, {"unique": True, "sparse": True})
        assert M.string().get_index_meta() is None


class TestCanonical:
    def test_option_order_does_not_matter(self):
        first = IndexDeclaration(key={"a": 1}, options={"unique": True, "sparse": True})
        second = IndexDeclaration(key={"a": 1}, options={"sparse": True, "unique": True})
        assert declaration_hash(first) == declaration_hash(second)

    def test_key_order_matters(self):
        first = IndexDeclaration(key={"a": 1, "b": 1})
        second = IndexDeclaration(key={"b": 1, "a": 1})
        assert declaration_hash(first) != declaration_hash(second)

    def test_server_defaults_and_name_are_ignored(self):
        declared = IndexDeclaration(key={"a": 1})
        reported = IndexDeclaration(key={"a": 1.0}, options={"name": "a_1", "unique": False, "sparse": False})
        assert declaration_hash(declared) == declaration_hash(reported)

    def test_live_text_index_maps_back_to_fields(self):
        info = {
            "v": 2,
            "key": {"_fts": "text", "_ftsx": 1},
            "name": "title_text_body_text",
            "weights": {"title": 1, "body": 1},
            "default_language": "english",
            "language_override": "language",
            "textIndexVersion": 3,
        }
        live = declaration_from_index_info(info)
        assert live.key == {"body": "text", "title": "text"}
        assert live.options["name"] == "title_text_body_text"
        declared = IndexDeclaration(key={"title": "text", "body": "text"})
        assert declaration_hash(live) == declaration_hash(declared)
        assert canonical_declaration(live) == {"key": [["body", "text"], ["title", "text"]], "options": {}}


class TestDiff:
    def test_idempotent_against_its_own_output(self):
        schema = M.schema({
            "a": M.string().unique_index(),
            "b": M.number().index(-1),
        }).add_index({"a": 1, "b": -1})
        wanted = schema.collect_indexes()
        live = [IndexDeclaration(key={"_id": 1}, options={"name": "_id_"})] + wanted

        plan = diff_indexes(wanted, live)
        assert (len(plan.create), len(plan.drop), len(plan.unchanged)) == (0, 0, 3)

    def test_create_drop_and_keep(self):
        wanted = [IndexDeclaration(key={"a": 1}), IndexDeclaration(key={"b": 1})]
        live = [
            IndexDeclaration(key={"_id": 1}, options={"name": "_id_"}),
            IndexDeclaration(key={"a": 1}, options={"name": "a_1"}),
            IndexDeclaration(key={"c": 1}, options={"name": "c_1"}),
        ]
        plan = diff_indexes(wanted, live)
        assert _keys(plan.create) == [{"b": 1}]
        assert [d.options["name"] for d in plan.drop] == ["c_1"]
        assert _keys(plan.unchanged) == [{"a": 1}]

    def test_changed_options_drop_and_create(self):
        wanted = [IndexDeclaration(key={"a": 1}, options={"unique": True})]
        live = [IndexDeclaration(key={"a": 1}, options={"name": "a_1"})]
        plan = diff_indexes(wanted, live)
        assert len(plan.create) == 1
        assert len(plan.drop) == 1

    def test_declared_id_index_is_left_to_the_store(self):
        wanted = [IndexDeclaration(key={"_id": 1}), IndexDeclaration(key={"a": 1})]
        plan = diff_indexes(wanted, [IndexDeclaration(key={"_id": 1}, options={"name": "_id_"})])
        assert _keys(plan.create) == [{"a": 1}]
        assert plan.drop == [] and plan.unchanged == []

    def test_identical_wanted_duplicates_collapse(self):
        wanted = [IndexDeclaration(key={"a": 1}), IndexDeclaration(key={"a": 1})]
        assert len(diff_indexes(wanted, []).create) == 1

    def test_conflicting_wanted_duplicates(self):
        wanted = [IndexDeclaration(key={"a": 1}), IndexDeclaration(key={"a": 1}, options={"unique": True})]
        with pytest.raises(IndexSyncError, match="Conflicting index declarations"):
            diff_indexes(wanted, [])


class TestSync:
    @pytest.fixture
    def schema(self):
        return M.schema({
            "username": M.string().unique_index(),
            "email": M.string().unique_index(),
            "age": M.number().index(),
            "status": M.string(),
        })

    def test_creates_collection_and_indexes(self, store, schema):
        result = sync_indexes(store, "users", schema)
        assert (result.created, result.dropped, result.unchanged) == (3, 0, 0)
        assert ("create_collection", "users") in store.calls
        assert len(store.live_names("users")) == 4

    def test_second_run_is_a_no_op(self, store, schema):
        sync_indexes(store, "users", schema)
        result = sync_indexes(store, "users", schema)
        assert (result.created, result.dropped, result.unchanged) == (0, 0, 3)

    def test_drops_undeclared_indexes_but_never_id(self, store, schema):
        store.add_live_index("users", {"legacy": 1})
        result = sync_indexes(store, "users", schema)
        assert (result.created, result.dropped, result.unchanged) == (3, 1, 0)
        assert "legacy_1" not in store.live_names("users")
        assert "_id_" in store.live_names("users")

    def test_declared_id_index_is_never_created(self, store):
        schema = M.schema({"_id": M.object_id().index(), "name": M.string().index()})
        first = sync_indexes(store, "users", schema)
        second = sync_indexes(store, "users", schema)
        assert (first.created, first.dropped, first.unchanged) == (1, 0, 0)
        assert (second.created, second.dropped, second.unchanged) == (0, 0, 1)
        assert store.live_names("users") == ["_id_", "name_1"]

    def test_text_index_round_trip(self, store):
        schema = M.schema({"title": M.string().text_index(), "tags": M.array(M.string()).hashed_index()})
        assert sync_indexes(store, "posts", schema).created == 2
        assert sync_indexes(store, "posts", schema).unchanged == 2

    def test_concurrent_identical_creation_is_unchanged(self, store, schema):
        store.create_collection("users")
        store.race_with = [IndexDeclaration(key={"username": 1}, options={"unique": True})]
        result = sync_indexes(store, "users", schema)
        assert (result.created, result.dropped, result.unchanged) == (2, 0, 1)

    def test_concurrent_conflicting_creation_is_raised(self, store, schema):
        store.create_collection("users")
        store.race_with = [IndexDeclaration(key={"username": 1})]
        with pytest.raises(IndexSyncError, match="Conflicting index"):
            sync_indexes(store, "users", schema)

    def test_conflicting_declarations_fail_before_store_is_touched(self, store):
        schema = M.schema({"a": M.string().index()}).add_index({"a": 1}, unique=True)
        with pytest.raises(IndexSyncError):
            sync_indexes(store, "things", schema)
        assert store.calls == []
