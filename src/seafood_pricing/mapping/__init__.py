"""Mapping subpackage - field mappings, transformation expressions and suggestions."""
from .expression import ExpressionEvaluator, evaluate, validate_expression
from .models import (
    EvaluationResult,
    FieldMapping,
    MappingSuggestion,
    MappingType,
    SourceField,
    TargetField,
    TransformationRule,
)
from .rule_compiler import compile_rules, templates_by_category, validate_rules
from .suggestions import MappingBoard, heuristic_suggestions, parse_mapping_suggestions

__all__ = [
    'ExpressionEvaluator', 'evaluate', 'validate_expression',
    'EvaluationResult', 'FieldMapping', 'MappingSuggestion', 'MappingType',
    'SourceField', 'TargetField', 'TransformationRule',
    'compile_rules', 'templates_by_category', 'validate_rules',
    'MappingBoard', 'heuristic_suggestions', 'parse_mapping_suggestions',
]
