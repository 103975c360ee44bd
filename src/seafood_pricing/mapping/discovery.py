"""
Field Discovery - Source fields from a sample record and our target field catalog.
"""
import logging
import re
from typing import Any

from .models import EntityType, SourceField, TargetField

logger = logging.getLogger(__name__)

_DATE_RE = re.compile(r'\d{4}-\d{2}-\d{2}.*', re.DOTALL)
_EMAIL_RE = re.compile(r'^[\w._%+-]+@[\w.-]+\.[A-Za-z]{2,}$')
_URL_RE = re.compile(r'^https?://.*', re.DOTALL)
_PHONE_RE = re.compile(r'^\+?[1-9]\d{1,14}$')

INT32_MAX = 2 ** 31 - 1


def is_simple_object(node: dict) -> bool:
    """Money, date and very small objects are mapped as a single field."""
    if 'amount' in node and 'currency' in node:
        return True
    if 'date' in node or 'timestamp' in node:
        return True
    return len(node) <= 2


def determine_field_type(value: Any) -> str:
    if value is None:
        return 'string'
    if isinstance(value, bool):
        return 'boolean'
    if isinstance(value, int):
        return 'integer' if -INT32_MAX - 1 <= value <= INT32_MAX else 'long'
    if isinstance(value, float):
        return 'decimal'
    if isinstance(value, list):
        return 'array'
    if isinstance(value, dict):
        return 'object'

    text = str(value)
    if _DATE_RE.fullmatch(text):
        return 'date'
    if _EMAIL_RE.match(text):
        return 'email'
    if _URL_RE.match(text):
        return 'url'
    if _PHONE_RE.match(text):
        return 'phone'
    return 'string'


def extract_fields(node: Any, prefix: str = "") -> list[SourceField]:
    """
    Walk a sample record depth-first.

    Nested objects contribute dotted names ("customer.email") and non-empty
    lists contribute the fields of their first element ("items[].product").
    """
    fields = []
    if not isinstance(node, dict):
        return fields

    for key, value in node.items():
        name = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, dict) and not is_simple_object(value):
            fields.extend(extract_fields(value, name))
        elif isinstance(value, list) and value:
            fields.extend(extract_fields(value[0], f"{name}[]"))
        else:
            fields.append(SourceField(
                name=name,
                type=determine_field_type(value),
                required=False,
                sample_value=value,
            ))
    return fields


def discover_source_fields(payload: Any) -> list[SourceField]:
    """
    Source fields of a sample API response.

    A top-level "data" member is unwrapped and a list contributes its first
    record.
    """
    node = payload
    if isinstance(node, dict) and 'data' in node:
        node = node['data']
    if isinstance(node, list) and node:
        node = node[0]

    fields = extract_fields(node)
    logger.info("Discovered %d source fields", len(fields))
    return fields


def _targets(entity_type: EntityType, specs: list[tuple[str, str]]) -> list[TargetField]:
    return [
        TargetField(name=name, type=type_, entity_type=entity_type.value, field_path=name)
        for name, type_ in specs
    ]


ENQUIRY_FIELDS = _targets(EntityType.ENQUIRY, [
    ('customer.email', 'email'),
    ('customer.companyName', 'string'),
    ('customer.contactPerson', 'string'),
    ('customer.phone', 'phone'),
    ('customer.address', 'string'),
    ('customer.country', 'string'),
    ('subject', 'string'),
    ('emailBody', 'text'),
    ('status', 'enum'),
    ('priority', 'enum'),
    ('dueDate', 'date'),
    ('items[].product', 'enum'),
    ('items[].trimType', 'enum'),
    ('items[].rmSpec', 'string'),
    ('items[].requestedQuantity', 'decimal'),
    ('items[].packagingType', 'enum'),
    ('items[].boxQuantity', 'string'),
    ('items[].productDescription', 'text'),
    ('items[].specialInstructions', 'text'),
])

QUOTE_FIELDS = ENQUIRY_FIELDS + _targets(EntityType.QUOTE, [
    ('quoteNumber', 'string'),
    ('totalAmount', 'decimal'),
    ('currency', 'string'),
    ('validityPeriod', 'integer'),
    ('terms', 'text'),
    ('items[].unitPrice', 'decimal'),
    ('items[].totalPrice', 'decimal'),
    ('items[].notes', 'text'),
])

ORDER_FIELDS = QUOTE_FIELDS + _targets(EntityType.ORDER, [
    ('orderNumber', 'string'),
    ('orderDate', 'date'),
    ('deliveryDate', 'date'),
    ('shippingAddress', 'text'),
    ('orderStatus', 'enum'),
    ('paymentStatus', 'enum'),
])

TARGET_FIELDS = {
    EntityType.ENQUIRY.value: ENQUIRY_FIELDS,
    EntityType.QUOTE.value: QUOTE_FIELDS,
    EntityType.ORDER.value: ORDER_FIELDS,
}


def target_fields_for(entity_type: str) -> list[TargetField]:
    """Mappable fields of an entity; QUOTE includes ENQUIRY and ORDER includes QUOTE."""
    fields = TARGET_FIELDS.get(str(entity_type or '').upper())
    if fields is None:
        logger.warning("Unknown entity type: %s", entity_type)
        return []
    return list(fields)
