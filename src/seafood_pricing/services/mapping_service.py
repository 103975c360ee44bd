"""
Mapping Service - Field discovery, transformation preview and mapping execution
for one integration.
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from ..mapping.discovery import discover_source_fields, target_fields_for
from ..mapping.expression import ExpressionEvaluator
from ..mapping.models import (
    EntityType,
    EvaluationResult,
    MappingSuggestion,
    MappingType,
    SourceField,
    TargetField,
    TransformationSuggestion,
)
from ..mapping.suggestions import MappingBoard, parse_mapping_suggestions, parse_transformation_suggestions

logger = logging.getLogger(__name__)


@dataclass
class DiscoveryResult:
    """Fields and suggestions for one entity type."""
    entity_type: str
    source_fields: list[SourceField] = field(default_factory=list)
    target_fields: list[TargetField] = field(default_factory=list)
    suggestions: list[MappingSuggestion] = field(default_factory=list)


def resolve_path(record: Any, path: str) -> Any:
    """
    Value at a dotted source path.

    "customer.email" walks nested objects; a "[]" suffix ("items[].product")
    takes the first element of a list. Raises KeyError when the path is absent.
    """
    node = record
    for part in path.split('.'):
        is_list = part.endswith('[]')
        key = part[:-2] if is_list else part
        if not isinstance(node, dict) or key not in node:
            raise KeyError(path)
        node = node[key]
        if is_list:
            if not isinstance(node, list) or not node:
                raise KeyError(path)
            node = node[0]
    return node


def parse_test_input(text: Any) -> Any:
    """Test inputs are JSON when they parse as JSON, raw text otherwise."""
    if not isinstance(text, str):
        return text
    try:
        return json.loads(text)
    except ValueError:
        return text


class MappingService:
    """Service for one integration's field mappings."""

    def __init__(
        self,
        integration_id: str = "",
        entity_type: str = EntityType.ENQUIRY.value,
        board: Optional[MappingBoard] = None,
        evaluator: Optional[ExpressionEvaluator] = None
    ):
        self.integration_id = integration_id
        self.entity_type = entity_type
        self.board = board or MappingBoard(integration_id)
        self.evaluator = evaluator or ExpressionEvaluator()

    def discover(self, sample_payload: Any, ai_payload: Any = None) -> DiscoveryResult:
        """
        Discover source fields from a sample record and suggest mappings.

        The suggestions replace the board's open suggestions.
        """
        source_fields = discover_source_fields(sample_payload)
        target_fields = target_fields_for(self.entity_type)
        suggestions = parse_mapping_suggestions(ai_payload, source_fields, target_fields)
        self.board.suggestions = list(suggestions)

        logger.info(
            "Discovered %d source fields, %d target fields, %d suggestions for %s",
            len(source_fields), len(target_fields), len(suggestions), self.entity_type,
            extra={"integration_id": self.integration_id}
        )
        return DiscoveryResult(
            entity_type=self.entity_type,
            source_fields=source_fields,
            target_fields=target_fields,
            suggestions=suggestions,
        )

    def preview(self, expression: str, test_input: Any) -> EvaluationResult:
        """Evaluate an expression against a test input (JSON text or a plain value)."""
        return self.evaluator.evaluate(expression, parse_test_input(test_input))

    def suggest_transformations(self, payload: Any) -> list[TransformationSuggestion]:
        """Transformation suggestions whose expression at least parses."""
        suggestions = []
        for suggestion in parse_transformation_suggestions(payload):
            check = self.evaluator.validate(suggestion.transformation)
            if not check.is_valid:
                logger.warning(
                    "Dropping transformation suggestion %r: %s", suggestion.transformation, check.error,
                    extra={"integration_id": self.integration_id}
                )
                continue
            suggestions.append(suggestion)
        return suggestions

    def apply_mappings(self, record: Any) -> tuple[dict[str, Any], dict[str, str]]:
        """
        Run every active mapping against a source record.

        Returns (target_values, errors), both keyed by target field.
        """
        values = {}
        errors = {}
        for mapping in self.board.active_mappings():
            try:
                source_value = resolve_path(record, mapping.source_field)
            except KeyError:
                errors[mapping.target_field] = f"Source field '{mapping.source_field}' not found"
                continue

            if mapping.mapping_type == MappingType.DIRECT:
                values[mapping.target_field] = source_value
                continue

            result = self.evaluator.evaluate(mapping.transformation_rule, source_value)
            if result.is_valid:
                values[mapping.target_field] = result.value
            else:
                errors[mapping.target_field] = result.error

        if errors:
            logger.warning(
                "%d of %d mappings failed", len(errors), len(errors) + len(values),
                extra={"integration_id": self.integration_id}
            )
        return values, errors
