from datetime import datetime, timezone

import pytest

from mongodb_schema_toolkit import M, validate_update
from mongodb_schema_toolkit.exceptions import (
    InvalidOperatorPayload, StructuralMismatch, TypeMismatch, UnknownField, UnknownOperator,
)


@pytest.fixture
def shape():
    return M.schema({
        "name": M.string().trim(),
        "nickname": M.string().optional(),
        "age": M.number().min(0),
        "score": M.number().nullable(),
        "tags": M.array(M.string()),
        "items": M.array(M.object({"sku": M.string(), "qty": M.number()})),
        "seen": M.date().optional(),
        "title": M.string().optional(),
        "flags": M.number(),
    }).get_shape()


class TestOperatorSet:
    def test_unknown_operator_is_rejected(self, shape):
        with pytest.raises(UnknownOperator):
            validate_update({"$bogus": {"name": "x"}}, shape)

    def test_unknown_operator_regardless_of_shape(self):
        with pytest.raises(UnknownOperator):
            validate_update({"$bogus": {}}, {})

    def test_payload_must_be_object(self, shape):
        with pytest.raises(InvalidOperatorPayload, match=r"\$set must be an object"):
            validate_update({"$set": ["name"]}, shape)

    def test_unknown_path(self, shape):
        with pytest.raises(UnknownField, match=r'^\$set\.missing: Field "missing" does not exist'):
            validate_update({"$set": {"missing": 1}}, shape)

    def test_structural_failure_is_path_qualified(self, shape):
        with pytest.raises(StructuralMismatch, match=r"^\$set\.name\.0: "):
            validate_update({"$set": {"name.0": "x"}}, shape)


class TestSet:
    def test_value_is_parsed(self, shape):
        assert validate_update({"$set": {"name": "  Ann "}}, shape) == {"$set": {"name": "Ann"}}

    def test_invalid_value(self, shape):
        with pytest.raises(TypeMismatch, match=r"^\$set\.age: Expected a number"):
            validate_update({"$set": {"age": "old"}}, shape)

    def test_null_only_for_nullable(self, shape):
        assert validate_update({"$set": {"score": None}}, shape) == {"$set": {"score": None}}
        with pytest.raises(TypeMismatch, match="not nullable"):
            validate_update({"$set": {"age": None}}, shape)

    def test_nested_array_element_field(self, shape):
        assert validate_update({"$set": {"items.0.qty": 2, "items.$.sku": "A"}}, shape) == {
            "$set": {"items.0.qty": 2, "items.$.sku": "A"},
        }

    def test_set_on_insert(self, shape):
        assert validate_update({"$setOnInsert": {"age": 1}}, shape) == {"$setOnInsert": {"age": 1}}


class TestUnset:
    @pytest.mark.parametrize("value", ["", 1, True])
    def test_accepted_payloads(self, shape, value):
        assert validate_update({"$unset": {"nickname": value}}, shape) == {"$unset": {"nickname": value}}

    def test_bad_payload(self, shape):
        with pytest.raises(InvalidOperatorPayload):
            validate_update({"$unset": {"nickname": 0}}, shape)

    def test_required_field(self, shape):
        with pytest.raises(InvalidOperatorPayload, match="Cannot unset required field"):
            validate_update({"$unset": {"name": ""}}, shape)


class TestArithmetic:
    def test_inc_and_mul(self, shape):
        assert validate_update({"$inc": {"age": 1}, "$mul": {"age": 1.5}}, shape) == {
            "$inc": {"age": 1},
            "$mul": {"age": 1.5},
        }

    def test_non_numeric_payload(self, shape):
        with pytest.raises(InvalidOperatorPayload, match="must be a number"):
            validate_update({"$inc": {"age": "1"}}, shape)

    def test_non_number_field(self, shape):
        with pytest.raises(TypeMismatch, match="can only be used on number fields"):
            validate_update({"$inc": {"name": 1}}, shape)

    def test_min_max_use_field_type(self, shape):
        assert validate_update({"$max": {"seen": "2024-01-01T00:00:00Z"}}, shape) == {
            "$max": {"seen": datetime(2024, 1, 1, tzinfo=timezone.utc)},
        }
        with pytest.raises(TypeMismatch):
            validate_update({"$min": {"name": 3}}, shape)


class TestCurrentDate:
    def test_date_field(self, shape):
        assert validate_update({"$currentDate": {"seen": True}}, shape) == {"$currentDate": {"seen": True}}
        assert validate_update({"$currentDate": {"seen": {"$type": "timestamp"}}}, shape)

    def test_non_date_field(self, shape):
        with pytest.raises(TypeMismatch, match="only be used on date fields"):
            validate_update({"$currentDate": {"name": True}}, shape)

    def test_bad_type(self, shape):
        with pytest.raises(InvalidOperatorPayload):
            validate_update({"$currentDate": {"seen": {"$type": "string"}}}, shape)

    def test_timestamp_fields_exempt(self, shape):
        update = {"$currentDate": {"updatedAt": True}}
        assert validate_update(update, shape, {"with_timestamps": True}) == update
        with pytest.raises(UnknownField):
            validate_update(update, shape)


class TestArrays:
    def test_push_element_is_validated(self, shape):
        with pytest.raises(TypeMismatch, match=r"^\$push\.tags: "):
            validate_update({"$push": {"tags": 123}}, shape)
        assert validate_update({"$push": {"tags": "ok"}}, shape) == {"$push": {"tags": "ok"}}

    def test_push_each_keeps_modifiers(self, shape):
        update = {"$push": {"tags": {"$each": ["a", "b"], "$slice": -5}}}
        assert validate_update(update, shape) == update
        with pytest.raises(TypeMismatch, match=r"\$each\[1\]"):
            validate_update({"$addToSet": {"tags": {"$each": ["a", 2]}}}, shape)

    def test_push_on_non_array(self, shape):
        with pytest.raises(TypeMismatch, match="only be used on array fields"):
            validate_update({"$push": {"name": "x"}}, shape)

    def test_pull(self, shape):
        assert validate_update({"$pull": {"tags": "a"}}, shape) == {"$pull": {"tags": "a"}}
        condition = {"$pull": {"items": {"qty": {"$lte": 0}}}}
        assert validate_update(condition, shape) == condition
        with pytest.raises(TypeMismatch):
            validate_update({"$pull": {"tags": 1}}, shape)

    def test_pull_all(self, shape):
        assert validate_update({"$pullAll": {"tags": ["a", "b"]}}, shape) == {"$pullAll": {"tags": ["a", "b"]}}
        with pytest.raises(InvalidOperatorPayload, match="must be an array"):
            validate_update({"$pullAll": {"tags": "a"}}, shape)

    @pytest.mark.parametrize("value", [-1, 1])
    def test_pop(self, shape, value):
        assert validate_update({"$pop": {"tags": value}}, shape) == {"$pop": {"tags": value}}

    def test_pop_bad_payload(self, shape):
        with pytest.raises(InvalidOperatorPayload, match="-1 or 1"):
            validate_update({"$pop": {"tags": 2}}, shape)


class TestBitAndRename:
    def test_bit(self, shape):
        assert validate_update({"$bit": {"flags": {"and": 5}}}, shape) == {"$bit": {"flags": {"and": 5}}}

    @pytest.mark.parametrize("value", [{"and": 1, "or": 2}, {"nand": 1}, {"xor": 1.5}, 3])
    def test_bit_bad_payload(self, shape, value):
        with pytest.raises(InvalidOperatorPayload):
            validate_update({"$bit": {"flags": value}}, shape)

    def test_rename_between_same_kinds(self, shape):
        assert validate_update({"$rename": {"nickname": "title"}}, shape) == {"$rename": {"nickname": "title"}}

    def test_rename_between_different_kinds(self, shape):
        with pytest.raises(TypeMismatch, match="incompatible types"):
            validate_update({"$rename": {"nickname": "age"}}, shape)

    def test_rename_to_unknown_field(self, shape):
        with pytest.raises(UnknownField):
            validate_update({"$rename": {"nickname": "alias"}}, shape)


def test_empty_operator_payload_is_dropped(shape):
    assert validate_update({"$set": {}, "$inc": {"age": 1}}, shape) == {"$inc": {"age": 1}}


def test_first_failure_aborts(shape):
    with pytest.raises(TypeMismatch, match=r"^\$set\.age"):
        validate_update({"$set": {"age": "x", "name": 1}}, shape)
