"""
Pydantic models for suggestion payloads returned by the external AI service.

Payload shapes are validated here, at the boundary; everything past this
module works with the dataclasses in mapping.models.
"""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class MappingSuggestionPayload(BaseModel):
    """One proposed field mapping."""
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    source_field: str = Field(alias='sourceField', min_length=1)
    target_field: str = Field(alias='targetField', min_length=1)
    confidence: float = Field(ge=0.0, le=1.0)
    reason: str = ""
    transformation: Optional[str] = None


class MappingSuggestionsPayload(BaseModel):
    """Response of the field discovery suggestion call."""
    mappings: list[MappingSuggestionPayload] = Field(default_factory=list)


class TransformationSuggestionPayload(BaseModel):
    """One proposed transformation expression."""
    model_config = ConfigDict(str_strip_whitespace=True)

    confidence: float = Field(ge=0.0, le=1.0)
    transformation: str = Field(min_length=1)
    explanation: str = ""
    category: str = ""
    examples: list[str] = Field(default_factory=list)
