import pytest
import sys
import os

# Add src to path for internal imports
src_path = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src')
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from seafood_pricing.mapping.discovery import (
    determine_field_type,
    discover_source_fields,
    extract_fields,
    is_simple_object,
    target_fields_for,
)

SAMPLE = {
    "data": [
        {
            "email": "buyer@fishco.no",
            "customer": {"name": "Fishco", "phone": "+4712345678", "country": "NO"},
            "items": [{"product": "Salmon", "qty": 10}],
            "price": {"amount": 5, "currency": "NOK"},
            "created": "2024-01-15T10:00:00Z",
            "reference": 3000000000,
            "ratio": 0.5,
            "active": True,
            "site": "https://fishco.no",
            "tags": [],
        },
        {"ignored": True},
    ]
}


def test_discover_source_fields_walks_first_record():
    fields = {f.name: f for f in discover_source_fields(SAMPLE)}

    assert list(fields) == [
        "email",
        "customer.name", "customer.phone", "customer.country",
        "items[].product", "items[].qty",
        "price", "created", "reference", "ratio", "active", "site", "tags",
    ]
    assert fields["email"].type == "email"
    assert fields["customer.phone"].type == "phone"
    assert fields["customer.country"].type == "string"
    assert fields["items[].qty"].type == "integer"
    assert fields["price"].type == "object"
    assert fields["created"].type == "date"
    assert fields["reference"].type == "long"
    assert fields["ratio"].type == "decimal"
    assert fields["active"].type == "boolean"
    assert fields["site"].type == "url"
    assert fields["tags"].type == "array"
    assert fields["items[].product"].sample_value == "Salmon"
    assert not any(f.required for f in fields.values())


def test_discover_plain_object_and_empty_payloads():
    assert [f.name for f in discover_source_fields({"a": 1})] == ["a"]
    assert discover_source_fields([]) == []
    assert discover_source_fields("text") == []


@pytest.mark.parametrize("node, expected", [
    ({"amount": 1, "currency": "EUR", "fx": 1.1}, True),
    ({"date": "2024-01-01", "tz": "UTC", "x": 1}, True),
    ({"a": 1, "b": 2}, True),
    ({"a": 1, "b": 2, "c": 3}, False),
])
def test_is_simple_object(node, expected):
    assert is_simple_object(node) is expected


@pytest.mark.parametrize("value, expected", [
    (None, "string"),
    (2147483647, "integer"),
    (2147483648, "long"),
    (-2147483648, "integer"),
    ("2024-01-15", "date"),
    ("not-a-date", "string"),
    ("http://x.y", "url"),
    ("12", "phone"),
])
def test_determine_field_type(value, expected):
    assert determine_field_type(value) == expected


def test_extract_fields_with_prefix():
    fields = extract_fields({"x": {"a": 1, "b": 2, "c": {"d": 1, "e": 2, "f": 3}}}, "root")
    assert [f.name for f in fields] == ["root.x.a", "root.x.b", "root.x.c.d", "root.x.c.e", "root.x.c.f"]


def test_target_field_catalogs_are_cumulative():
    enquiry = target_fields_for("ENQUIRY")
    quote = target_fields_for("quote")
    order = target_fields_for("ORDER")

    assert len(enquiry) == 19
    assert len(quote) == 27
    assert len(order) == 33
    assert [f.name for f in quote[:19]] == [f.name for f in enquiry]
    assert {f.entity_type for f in order} == {"ENQUIRY", "QUOTE", "ORDER"}
    assert all(f.field_path == f.name for f in order)


def test_unknown_entity_type_has_no_targets():
    assert target_fields_for("INVOICE") == []
