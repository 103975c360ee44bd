import json
import logging
import pytest
import sys
import os

# Add src to path for internal imports
src_path = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src')
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from seafood_pricing.config.logging_config import JSONFormatter, setup_logging
from seafood_pricing.config.settings import Settings, get_settings
from seafood_pricing.engine.models import JobSpecification, ToggleState
from seafood_pricing.errors import FactoryDataError, ToggleRejected, UnknownFactory
from seafood_pricing.mapping.models import MappingType
from seafood_pricing.services import MappingService, QuoteService
from seafood_pricing.services.mapping_service import parse_test_input, resolve_path

ENQUIRY_ITEM = {
    "productType": "Fresh",
    "product": "Salmon",
    "trimType": "A",
    "rmSpec": "1-2kg",
    "requestedQuantity": "100",
    "boxQuantity": 10,
    "packagingType": "Box",
    "productDescription": "Fresh salmon fillets",
}


@pytest.fixture
def quote_service(factory):
    return QuoteService(factories={factory.id: factory})


@pytest.fixture
def mapping_service():
    return MappingService("integration-1", "ENQUIRY")


# Quote service

def test_unknown_factory(quote_service):
    with pytest.raises(UnknownFactory) as exc:
        quote_service.get_factory("nope")
    assert str(exc.value) == "Unknown factory 'nope'"
    # Also a KeyError for dict-style callers
    with pytest.raises(KeyError):
        quote_service.compose("nope", JobSpecification())


def test_new_line_resolves_selection(quote_service):
    line = quote_service.new_line("F1", JobSpecification(product_type="Fresh", product="Salmon",
                                                         trim_type="A", quantity=100))
    assert line.job.packaging_type == "Box"
    assert line.breakdown.total == pytest.approx(11.0)


def test_new_line_checks_requested_toggles(quote_service, fresh_job):
    with pytest.raises(ToggleRejected):
        quote_service.new_line("F1", fresh_job, toggles=ToggleState(descaling=True))

    line = quote_service.new_line("F1", fresh_job.with_changes(yield_value=80), toggles=ToggleState(descaling=True))
    assert line.toggles.descaling is True
    assert len(line.optional_charges) == 1


def test_lines_from_enquiry_and_quote(quote_service):
    lines = quote_service.lines_from_enquiry("F1", [ENQUIRY_ITEM, dict(ENQUIRY_ITEM, requestedQuantity="50")])
    assert [line.job.quantity for line in lines] == [100.0, 50.0]
    assert lines[0].job.box_qty == "10"

    result = quote_service.compose_quote("F1", lines)
    assert result.total == pytest.approx(22.0)
    assert result.lines[0].label == "Fresh salmon fillets"
    assert result.factory_id == "F1"


def test_compose_through_service(quote_service, fresh_job):
    breakdown = quote_service.compose("F1", fresh_job, ToggleState(terminal_charge=False))
    assert breakdown.total == pytest.approx(8.0)


def test_factories_load_lazily_from_settings(tmp_path):
    settings = Settings(project_root=tmp_path, data_dir=tmp_path / "missing")
    service = QuoteService(settings=settings)
    with pytest.raises(FactoryDataError):
        service.list_factories()


def test_list_factories_sorted_by_name(factory):
    from seafood_pricing.engine.models import Factory
    other = Factory(id="F0", name="Alpha")
    service = QuoteService(factories={factory.id: factory, other.id: other})
    assert [f.name for f in service.list_factories()] == ["Alpha", "Nordfisk"]


# Mapping service

def test_resolve_path():
    record = {"customer": {"email": "a@b.no"}, "items": [{"product": "Salmon"}]}
    assert resolve_path(record, "customer.email") == "a@b.no"
    assert resolve_path(record, "items[].product") == "Salmon"
    with pytest.raises(KeyError):
        resolve_path(record, "customer.phone")
    with pytest.raises(KeyError):
        resolve_path({"items": []}, "items[].product")


def test_parse_test_input():
    assert parse_test_input("2.5") == 2.5
    assert parse_test_input('{"a": 1}') == {"a": 1}
    assert parse_test_input("hello") == "hello"
    assert parse_test_input(7) == 7


def test_discover_without_ai_payload_uses_heuristic(mapping_service):
    result = mapping_service.discover({"data": [{"email": "a@b.no", "zzz": 1}]})

    assert [f.name for f in result.source_fields] == ["email", "zzz"]
    assert len(result.target_fields) == 19
    assert result.suggestions, "heuristic should propose at least one mapping"
    assert all(s.source_field == "email" for s in result.suggestions)
    assert mapping_service.board.suggestions == result.suggestions


def test_discover_with_ai_payload(mapping_service):
    payload = {"mappings": [{"sourceField": "email", "targetField": "customer.email",
                             "confidence": 0.97, "reason": "exact"}]}
    result = mapping_service.discover({"email": "a@b.no"}, payload)
    assert [(s.target_field, s.confidence_score) for s in result.suggestions] == [("customer.email", 0.97)]


def test_preview(mapping_service):
    assert mapping_service.preview("parseFloat(value) * 1000", "2.5").value == 2500
    assert mapping_service.preview("value.toUpperCase()", "hello").value == "HELLO"

    failed = mapping_service.preview("value.", "x")
    assert not failed.is_valid
    assert failed.error


def test_suggest_transformations_drops_unparseable(mapping_service):
    suggestions = mapping_service.suggest_transformations([
        {"confidence": 0.9, "transformation": "value.trim()"},
        {"confidence": 0.8, "transformation": "value +"},
    ])
    assert [s.transformation for s in suggestions] == ["value.trim()"]


def test_apply_mappings(mapping_service):
    board = mapping_service.board
    board.create_mapping("contact.email", "customer.email")
    weight = board.create_mapping("weight", "items[].requestedQuantity")
    board.apply_rules(weight.id, [{"type": "calculation", "operation": "multiply", "parameters": {"factor": 1000}}])
    board.create_mapping("missing", "subject")
    board.create_mapping("name", "customer.companyName", transformation="value.shout()")
    inactive = board.create_mapping("name", "customer.contactPerson")
    board.set_active(inactive.id, False)

    values, errors = mapping_service.apply_mappings(
        {"contact": {"email": "a@b.no"}, "weight": "2.5", "name": "Fishco"}
    )

    assert weight.mapping_type == MappingType.CALCULATED
    assert values == {"customer.email": "a@b.no", "items[].requestedQuantity": 2500}
    assert errors["subject"] == "Source field 'missing' not found"
    assert errors["customer.companyName"] == "TypeError: value.shout is not a function"
    assert "customer.contactPerson" not in values


# Settings and logging

def test_settings_read_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("SEAFOOD_PRICING_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("SEAFOOD_PRICING_LOG_LEVEL", "debug")
    monkeypatch.setenv("SEAFOOD_PRICING_LOG_JSON", "false")

    settings = get_settings()
    assert settings.data_dir == tmp_path
    assert settings.log_level == "DEBUG"
    assert settings.log_json is False
    assert settings.max_expression_length == 2000


def test_json_formatter_includes_context():
    record = logging.LogRecord("seafood_pricing.test", logging.INFO, __file__, 10, "Loaded %s", ("F1",), None)
    record.factory_id = "F1"

    entry = json.loads(JSONFormatter().format(record))
    assert entry["message"] == "Loaded F1"
    assert entry["level"] == "INFO"
    assert entry["factory_id"] == "F1"
    assert "integration_id" not in entry


def test_setup_logging_replaces_root_handlers():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        setup_logging(level="DEBUG", json_output=True)
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JSONFormatter)
    finally:
        root.handlers = saved_handlers
        root.setLevel(saved_level)
