from __future__ import annotations

import pytest

from roster_import.models.canonical_record import CanonicalRecord
from roster_import.services.validator import (
    MISSING_NAME,
    NOT_AN_OBJECT,
    PLACEHOLDER_NAME,
    RecordValidator,
    is_acceptable,
)


@pytest.mark.parametrize("name", ["", "   ", "\t\n"])
def test_blank_name_is_rejected(name):
    result = is_acceptable(CanonicalRecord(full_name=name), 0)
    assert not result.accepted
    assert result.reason == MISSING_NAME


@pytest.mark.parametrize("name", ["Name", "Full Name", " full name "])
def test_header_placeholder_name_is_rejected(name):
    result = RecordValidator().coerce({"full_name": name}, 0)
    assert not result.accepted
    assert result.reason == PLACEHOLDER_NAME


def test_name_containing_placeholder_word_is_accepted():
    assert is_acceptable(CanonicalRecord(full_name="Name Smith"), 0).accepted


@pytest.mark.parametrize("item", [None, 42, "Jane Doe", ["Jane"], object()])
def test_non_record_is_rejected(item):
    result = RecordValidator().coerce(item, 3)
    assert not result.accepted
    assert result.reason == NOT_AN_OBJECT


def test_revalidation_is_idempotent(records):
    validator = RecordValidator()
    for index, record in enumerate(records(10) + [CanonicalRecord(full_name="Ann", equipment=("Mat",))]):
        first = is_acceptable(record, index)
        assert first.accepted
        for _ in range(3):
            again = is_acceptable(first.record, index)
            assert again.accepted
            assert again.record == record
        assert validator.coerce(first.record, index).accepted


def test_dict_items_are_coerced():
    result = RecordValidator().coerce({"name": " Jane ", "equipment": "Bands|Mat", "sheetName": "Upload"}, 0)
    assert result.accepted
    assert result.record == CanonicalRecord(full_name="Jane", equipment=("Bands", "Mat"), source_sheet_name="Upload")


def test_filter_splits_accepted_and_rejected():
    items = [
        CanonicalRecord(full_name="Ann"),
        {"full_name": ""},
        "garbage",
        {"full_name": "Bob", "email": "bob@x.com"},
    ]
    accepted, rejected = RecordValidator().filter(items)
    assert [r.full_name for r in accepted] == ["Ann", "Bob"]
    assert rejected == [(1, MISSING_NAME), (2, NOT_AN_OBJECT)]


def test_optional_fields_are_never_absent():
    record = RecordValidator().coerce({"full_name": "Ann"}, 0).record
    assert record is not None
    payload = record.to_payload()
    assert set(payload) == {"full_name", "email", "phone", "goals", "injuries", "equipment", "notes"}
    assert payload["equipment"] == []
