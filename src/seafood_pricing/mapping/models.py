"""
Data models for integration field mapping.

Source and target field descriptors are immutable once discovered. A
FieldMapping keeps its mapping_type in step with its transformation rule:
DIRECT exactly when the rule is empty.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class MappingType(str, Enum):
    DIRECT = "DIRECT"
    TRANSFORMED = "TRANSFORMED"
    CALCULATED = "CALCULATED"
    CONDITIONAL = "CONDITIONAL"


class EntityType(str, Enum):
    ENQUIRY = "ENQUIRY"
    QUOTE = "QUOTE"
    ORDER = "ORDER"


# Transformation rule types
RULE_TYPES = {'function', 'condition', 'calculation', 'format'}

# Manually created mappings start at this confidence
MANUAL_CONFIDENCE = 0.8


@dataclass(frozen=True)
class SourceField:
    """A field discovered in an external record."""
    name: str
    type: str = "string"
    required: bool = False
    sample_value: Any = None
    description: str = ""


@dataclass(frozen=True)
class TargetField:
    """A field of one of our entities that external data can be mapped onto."""
    name: str
    type: str = "string"
    required: bool = False
    entity_type: str = EntityType.ENQUIRY.value
    field_path: str = ""
    description: str = ""


@dataclass(frozen=True)
class TransformationRule:
    """One step of a visual transformation."""
    type: str
    operation: str
    parameters: dict = field(default_factory=dict)
    description: str = ""
    order: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> 'TransformationRule':
        return cls(
            type=str(data.get('type', '')),
            operation=str(data.get('operation', '')),
            parameters=dict(data.get('parameters') or {}),
            description=str(data.get('description', '') or ''),
            order=int(data.get('order', 0) or 0),
        )


@dataclass
class FieldMapping:
    """A mapping from one source field to one target field."""
    id: str
    source_field: str
    target_field: str
    transformation_rule: str = ""
    is_active: bool = True
    confidence_score: float = MANUAL_CONFIDENCE
    mapping_type: MappingType = MappingType.DIRECT

    def __post_init__(self):
        self.set_confidence(self.confidence_score)
        self.transformation_rule = self.transformation_rule or ""
        if not self.transformation_rule:
            self.mapping_type = MappingType.DIRECT
        elif self.mapping_type == MappingType.DIRECT:
            self.mapping_type = MappingType.TRANSFORMED

    @property
    def key(self) -> tuple[str, str]:
        return (self.source_field, self.target_field)

    def set_confidence(self, confidence: float):
        if not 0.0 <= confidence <= 1.0:
            raise ValueError(f"confidence_score must be within [0, 1], got {confidence}")
        self.confidence_score = confidence

    def set_transformation(self, expression: Optional[str], mapping_type: Optional[MappingType] = None):
        """
        Set or clear the transformation expression.

        A non-empty expression makes the mapping TRANSFORMED unless an
        advisory CALCULATED/CONDITIONAL classification is given; clearing it
        reverts to DIRECT.
        """
        expression = (expression or "").strip()
        self.transformation_rule = expression
        if not expression:
            self.mapping_type = MappingType.DIRECT
        elif mapping_type in (MappingType.CALCULATED, MappingType.CONDITIONAL):
            self.mapping_type = mapping_type
        else:
            self.mapping_type = MappingType.TRANSFORMED

    def to_dict(self) -> dict:
        """Convert to the camelCase dict handed to the integration-save interface."""
        return {
            "id": self.id,
            "sourceField": self.source_field,
            "targetField": self.target_field,
            "transformationRule": self.transformation_rule,
            "isActive": self.is_active,
            "confidenceScore": self.confidence_score,
            "mappingType": self.mapping_type.value,
        }


@dataclass(frozen=True)
class MappingSuggestion:
    """A proposed mapping with a confidence score and a reason."""
    source_field: str
    target_field: str
    confidence_score: float
    reason: str = ""
    suggested_transformation: Optional[str] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.source_field, self.target_field)


@dataclass(frozen=True)
class TransformationSuggestion:
    """A proposed transformation expression for one field."""
    confidence: float
    transformation: str
    explanation: str = ""
    category: str = ""
    examples: tuple[str, ...] = ()


@dataclass
class EvaluationResult:
    """Outcome of evaluating an expression against one input value."""
    is_valid: bool
    value: Any = None
    error: Optional[str] = None
