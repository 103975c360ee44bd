"""
Mapping Suggestions - Confidence-scored suggestions and the mapping board.

Suggestions come either from the external AI service (validated against the
schemas in mapping.schemas) or from the name-similarity heuristic used when
that payload is missing or malformed. The MappingBoard holds the mappings of
one integration and applies the accept/reject/create rules.
"""
import itertools
import json
import logging
import re
from typing import Any, Iterable, Optional, Union

from pydantic import ValidationError

from ..config.settings import get_settings
from .models import (
    MANUAL_CONFIDENCE,
    FieldMapping,
    MappingSuggestion,
    SourceField,
    TargetField,
    TransformationRule,
    TransformationSuggestion,
)
from .expression import INPUT_NAME
from .rule_compiler import classify_rules, compile_rules
from .schemas import MappingSuggestionsPayload, TransformationSuggestionPayload

logger = logging.getLogger(__name__)

# Business vocabulary; two names sharing a group are likely related
NAME_PATTERNS = {
    'email': ('email', 'mail', 'address'),
    'company': ('company', 'organization', 'org', 'business'),
    'name': ('name', 'title', 'label'),
    'phone': ('phone', 'tel', 'mobile', 'contact'),
    'address': ('address', 'location', 'addr'),
    'date': ('date', 'time', 'created', 'updated'),
    'amount': ('amount', 'price', 'cost', 'total', 'value'),
    'quantity': ('quantity', 'qty', 'amount', 'count'),
}

HIGH_CONFIDENCE = 0.8
MEDIUM_CONFIDENCE = 0.6


def confidence_band(score: float) -> str:
    if score >= HIGH_CONFIDENCE:
        return 'high'
    if score >= MEDIUM_CONFIDENCE:
        return 'medium'
    return 'low'


def _letters(name: str) -> str:
    return re.sub(r'[^a-z]', '', name.lower())


def field_similarity(source: str, target: str) -> float:
    """
    Similarity of two field names in [0, 1].

    Names are compared lower-case with everything but letters removed:
    equal -> 1.0, one contains the other -> 0.8, shared vocabulary group -> 0.7.
    """
    source, target = _letters(source), _letters(target)
    if source == target:
        return 1.0
    if source in target or target in source:
        return 0.8
    for words in NAME_PATTERNS.values():
        if any(w in source for w in words) and any(w in target for w in words):
            return 0.7
    return 0.0


def heuristic_suggestions(
    source_fields: Iterable[SourceField],
    target_fields: Iterable[TargetField],
    threshold: Optional[float] = None
) -> list[MappingSuggestion]:
    """Suggest every pair scoring above the threshold, best first."""
    if threshold is None:
        threshold = get_settings().suggestion_threshold
    target_fields = list(target_fields)

    suggestions = []
    for source in source_fields:
        for target in target_fields:
            similarity = field_similarity(source.name, target.name)
            if similarity > threshold:
                suggestions.append(MappingSuggestion(
                    source_field=source.name,
                    target_field=target.name,
                    confidence_score=similarity,
                    reason=f"Field name similarity: {similarity:.2f}",
                ))

    suggestions.sort(key=lambda s: s.confidence_score, reverse=True)
    return suggestions


def _load_json(payload: Union[str, bytes, dict, list, None]) -> Any:
    if isinstance(payload, (str, bytes)):
        return json.loads(payload)
    return payload


def parse_mapping_suggestions(
    payload: Union[str, bytes, dict, None],
    source_fields: Iterable[SourceField],
    target_fields: Iterable[TargetField]
) -> list[MappingSuggestion]:
    """
    Suggestions from an AI payload of the form
    {"mappings": [{sourceField, targetField, confidence, reason, transformation?}]}.

    A missing or malformed payload falls back to the name heuristic.
    Suggestions naming fields that are not in the given lists are dropped.
    """
    source_fields = list(source_fields)
    target_fields = list(target_fields)

    try:
        data = _load_json(payload)
        if data is None:
            raise ValueError("empty payload")
        parsed = MappingSuggestionsPayload.model_validate(data)
    except (ValueError, ValidationError) as e:
        logger.warning("Malformed mapping suggestions, using name heuristic: %s", e)
        return heuristic_suggestions(source_fields, target_fields)

    source_names = {f.name for f in source_fields}
    target_names = {f.name for f in target_fields}

    suggestions = []
    for item in parsed.mappings:
        if source_names and item.source_field not in source_names:
            logger.warning("Dropping suggestion for unknown source field %s", item.source_field)
            continue
        if target_names and item.target_field not in target_names:
            logger.warning("Dropping suggestion for unknown target field %s", item.target_field)
            continue
        suggestions.append(MappingSuggestion(
            source_field=item.source_field,
            target_field=item.target_field,
            confidence_score=item.confidence,
            reason=item.reason,
            suggested_transformation=item.transformation or None,
        ))

    logger.info("Parsed %d mapping suggestions", len(suggestions))
    return suggestions


def parse_transformation_suggestions(payload: Union[str, bytes, dict, list, None]) -> list[TransformationSuggestion]:
    """
    Transformation suggestions from the external service.

    Accepts a single suggestion, a list of them or {"suggestions": [...]};
    malformed entries are dropped.
    """
    try:
        data = _load_json(payload)
    except ValueError as e:
        logger.warning("Malformed transformation suggestions: %s", e)
        return []

    if isinstance(data, dict):
        items = data['suggestions'] if isinstance(data.get('suggestions'), list) else [data]
    elif isinstance(data, list):
        items = data
    else:
        return []

    suggestions = []
    for index, item in enumerate(items):
        try:
            parsed = TransformationSuggestionPayload.model_validate(item)
        except ValidationError as e:
            logger.warning("Dropping transformation suggestion %d: %s", index, e.errors()[0]['msg'])
            continue
        suggestions.append(TransformationSuggestion(
            confidence=parsed.confidence,
            transformation=parsed.transformation,
            explanation=parsed.explanation,
            category=parsed.category,
            examples=tuple(parsed.examples),
        ))
    return suggestions


class MappingBoard:
    """
    Field mappings and open suggestions of one integration.

    At most one active mapping exists per (source, target) pair.
    """

    def __init__(
        self,
        integration_id: str = "",
        mappings: Iterable[FieldMapping] = (),
        suggestions: Iterable[MappingSuggestion] = ()
    ):
        self.integration_id = integration_id
        self.mappings: list[FieldMapping] = list(mappings)
        self.suggestions: list[MappingSuggestion] = list(suggestions)
        self._ids = itertools.count(len(self.mappings) + 1)

    def _next_id(self) -> str:
        existing = {m.id for m in self.mappings}
        while True:
            candidate = f"mapping-{next(self._ids)}"
            if candidate not in existing:
                return candidate

    def get(self, mapping_id: str) -> FieldMapping:
        for mapping in self.mappings:
            if mapping.id == mapping_id:
                return mapping
        raise KeyError(f"Unknown mapping '{mapping_id}'")

    def find(self, source_field: str, target_field: str, active_only: bool = True) -> Optional[FieldMapping]:
        for mapping in self.mappings:
            if mapping.key == (source_field, target_field) and (mapping.is_active or not active_only):
                return mapping
        return None

    def active_mappings(self) -> list[FieldMapping]:
        return [m for m in self.mappings if m.is_active]

    def create_mapping(
        self,
        source_field: str,
        target_field: str,
        confidence: float = MANUAL_CONFIDENCE,
        transformation: Optional[str] = None
    ) -> Optional[FieldMapping]:
        """
        Create a mapping for a (source, target) pair.

        Returns None when an active mapping for the pair already exists. An
        inactive one is reactivated instead of duplicated.
        """
        if self.find(source_field, target_field) is not None:
            logger.debug("Mapping %s -> %s already exists", source_field, target_field)
            return None

        mapping = self.find(source_field, target_field, active_only=False)
        if mapping is not None:
            mapping.set_confidence(confidence)
            mapping.set_transformation(transformation)
            mapping.is_active = True
        else:
            mapping = FieldMapping(
                id=self._next_id(),
                source_field=source_field,
                target_field=target_field,
                confidence_score=confidence,
            )
            mapping.set_transformation(transformation)
            self.mappings.append(mapping)

        logger.info(
            "Mapped %s -> %s (%s)", source_field, target_field, mapping.mapping_type.value,
            extra={"integration_id": self.integration_id}
        )
        return mapping

    def _discard_suggestion(self, suggestion: MappingSuggestion):
        self.suggestions = [s for s in self.suggestions if s.key != suggestion.key]

    def accept_suggestion(self, suggestion: MappingSuggestion) -> Optional[FieldMapping]:
        """Turn a suggestion into a mapping, carrying over its confidence."""
        self._discard_suggestion(suggestion)
        return self.create_mapping(
            suggestion.source_field,
            suggestion.target_field,
            confidence=suggestion.confidence_score,
            transformation=suggestion.suggested_transformation,
        )

    def reject_suggestion(self, suggestion: MappingSuggestion):
        self._discard_suggestion(suggestion)
        logger.info(
            "Rejected suggestion %s -> %s", suggestion.source_field, suggestion.target_field,
            extra={"integration_id": self.integration_id}
        )

    def update_transformation(self, mapping_id: str, expression: Optional[str]) -> FieldMapping:
        mapping = self.get(mapping_id)
        mapping.set_transformation(expression)
        return mapping

    def apply_rules(self, mapping_id: str, rules: Iterable[Union[TransformationRule, dict]]) -> FieldMapping:
        """Compile visual rules onto a mapping; rules that compile to nothing clear it."""
        rules = list(rules)
        mapping = self.get(mapping_id)
        expression = compile_rules(rules)
        if expression == INPUT_NAME:
            mapping.set_transformation(None)
        else:
            mapping.set_transformation(expression, classify_rules(rules))
        return mapping

    def set_active(self, mapping_id: str, active: bool) -> FieldMapping:
        mapping = self.get(mapping_id)
        if active and not mapping.is_active:
            other = self.find(mapping.source_field, mapping.target_field)
            if other is not None:
                raise ValueError(
                    f"An active mapping already exists for {mapping.source_field} -> {mapping.target_field}"
                )
        mapping.is_active = bool(active)
        return mapping

    def delete_mapping(self, mapping_id: str):
        self.get(mapping_id)
        self.mappings = [m for m in self.mappings if m.id != mapping_id]

    def to_dicts(self) -> list[dict]:
        return [m.to_dict() for m in self.mappings]
