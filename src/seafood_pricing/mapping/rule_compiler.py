"""
Rule Compiler - Turns visual transformation rules into an expression.

Rules are applied in list order; each one wraps the expression built so far,
starting from the bare input name ``value``:

    []                               -> value
    [toUpperCase]                    -> value.toUpperCase()
    [multiply(1000)]                 -> parseFloat(value) * 1000
    [if_then_else(value > 100)]      -> (value > 100) ? 'HIGH' : 'LOW'

compile_rules is lenient (rules it cannot render are skipped); use
validate_rules to report problems to the user first.
"""
import logging
from collections import Counter
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Union

from .expression import INPUT_NAME, number_to_string, to_number
from .models import RULE_TYPES, MappingType, TransformationRule

logger = logging.getLogger(__name__)

RuleLike = Union[TransformationRule, dict]

FUNCTION_OPERATIONS = {
    'toUpperCase': '{acc}.toUpperCase()',
    'toLowerCase': '{acc}.toLowerCase()',
    'dateToISO': 'new Date({acc}).toISOString()',
    'new Date().toISOString': 'new Date({acc}).toISOString()',
}

CALCULATION_OPERATIONS = {
    'multiply': '*',
    'divide': '/',
}

CONDITION_OPERATIONS = {'if_then_else'}

CONDITION_PARAMETERS = ('condition', 'trueValue', 'falseValue')


def as_rule(rule: RuleLike) -> TransformationRule:
    if isinstance(rule, TransformationRule):
        return rule
    return TransformationRule.from_dict(rule)


def render_factor(factor: Any) -> Optional[str]:
    """Render a numeric factor as expression source; None when not numeric."""
    if isinstance(factor, bool) or factor is None:
        return None
    number = to_number(factor)
    if isinstance(number, float) and number != number:
        return None
    return number_to_string(number)


def quote(text: Any) -> str:
    text = str(text).replace('\\', '\\\\').replace("'", "\\'")
    return f"'{text}'"


def compile_rule(rule: TransformationRule, acc: str) -> Optional[str]:
    """Wrap acc with one rule; None when the rule cannot be rendered."""
    params = rule.parameters or {}

    if rule.type == 'function':
        template = FUNCTION_OPERATIONS.get(rule.operation)
        return template.format(acc=acc) if template else None

    if rule.type == 'calculation':
        op = CALCULATION_OPERATIONS.get(rule.operation)
        factor = render_factor(params.get('factor'))
        if op is None or factor is None:
            return None
        return f"parseFloat({acc}) {op} {factor}"

    if rule.type == 'condition':
        if rule.operation not in CONDITION_OPERATIONS:
            return None
        condition = params.get('condition')
        if not condition:
            return None
        condition = str(condition).replace(INPUT_NAME, acc, 1)
        return f"({condition}) ? {quote(params.get('trueValue', ''))} : {quote(params.get('falseValue', ''))}"

    return None


def compile_rules(rules: Iterable[RuleLike]) -> str:
    """
    Compile an ordered rule list into a single expression.

    Args:
        rules: TransformationRule instances or their dict form

    Returns:
        Expression source; the bare input name for an empty list
    """
    code = INPUT_NAME
    for rule in rules:
        rule = as_rule(rule)
        compiled = compile_rule(rule, code)
        if compiled is None:
            logger.debug("Skipping rule %s/%s", rule.type, rule.operation)
            continue
        code = compiled
    return code


def validate_rule(rule: RuleLike, position: int) -> tuple[Optional[TransformationRule], list[str]]:
    """
    Validate one rule.

    Returns (rule, errors) - rule is None if validation failed.
    """
    try:
        rule = as_rule(rule)
    except (TypeError, ValueError, AttributeError) as e:
        return None, [f"Rule {position}: malformed rule ({e})"]

    errors = []
    if rule.type not in RULE_TYPES:
        errors.append(f"Rule {position}: invalid type '{rule.type}', must be one of: {sorted(RULE_TYPES)}")
        return None, errors

    params = rule.parameters or {}
    if rule.type == 'function':
        if rule.operation not in FUNCTION_OPERATIONS:
            errors.append(f"Rule {position}: unknown function '{rule.operation}'")
    elif rule.type == 'calculation':
        if rule.operation not in CALCULATION_OPERATIONS:
            errors.append(f"Rule {position}: unknown calculation '{rule.operation}'")
        if render_factor(params.get('factor')) is None:
            errors.append(f"Rule {position}: factor must be numeric for {rule.operation}")
        elif rule.operation == 'divide' and to_number(params.get('factor')) == 0:
            errors.append(f"Rule {position}: factor must not be zero for divide")
    elif rule.type == 'condition':
        if rule.operation not in CONDITION_OPERATIONS:
            errors.append(f"Rule {position}: unknown condition '{rule.operation}'")
        for name in CONDITION_PARAMETERS:
            if name not in params or params[name] in (None, ''):
                errors.append(f"Rule {position}: {name} is required for {rule.operation}")
        if params.get('condition') and INPUT_NAME not in str(params['condition']):
            errors.append(f"Rule {position}: condition must reference '{INPUT_NAME}'")
    else:
        errors.append(f"Rule {position}: no operations are available for type '{rule.type}'")

    if errors:
        return None, errors
    return rule, []


def validate_rules(rules: Iterable[RuleLike]) -> tuple[list[TransformationRule], list[str]]:
    """Validate a rule list. Returns (valid_rules, errors)."""
    valid = []
    all_errors = []
    for position, rule in enumerate(rules, start=1):
        checked, errors = validate_rule(rule, position)
        if errors:
            all_errors.extend(errors)
        elif checked:
            valid.append(checked)
    return valid, all_errors


def classify_rules(rules: Iterable[RuleLike]) -> MappingType:
    """
    Advisory mapping type for a rule list.

    The most common rule type decides: calculation -> CALCULATED,
    condition -> CONDITIONAL, anything else -> TRANSFORMED. Empty -> DIRECT.
    """
    counts = Counter(as_rule(r).type for r in rules)
    if not counts:
        return MappingType.DIRECT
    dominant = counts.most_common(1)[0][0]
    if dominant == 'calculation':
        return MappingType.CALCULATED
    if dominant == 'condition':
        return MappingType.CONDITIONAL
    return MappingType.TRANSFORMED


@dataclass(frozen=True)
class TransformationTemplate:
    """A ready-made rule list offered in the transformation builder."""
    id: str
    name: str
    description: str
    category: str
    rules: tuple[TransformationRule, ...]
    example_input: Any = None
    example_output: Any = None

    @property
    def expression(self) -> str:
        return compile_rules(self.rules)


TEMPLATES = (
    TransformationTemplate(
        id='uppercase',
        name='Convert to Uppercase',
        description='Convert text to uppercase',
        category='Text',
        rules=(TransformationRule('function', 'toUpperCase', {}, 'Convert to uppercase', 1),),
        example_input='hello world',
        example_output='HELLO WORLD',
    ),
    TransformationTemplate(
        id='date_format',
        name='Format Date',
        description='Convert date to ISO format',
        category='Date',
        rules=(TransformationRule('function', 'new Date().toISOString', {}, 'Convert to ISO date', 1),),
        example_input='2024-01-15',
        example_output='2024-01-15T00:00:00.000Z',
    ),
    TransformationTemplate(
        id='number_conversion',
        name='Number Conversion',
        description='Convert string to number with scaling',
        category='Number',
        rules=(TransformationRule('calculation', 'multiply', {'factor': 1000}, 'Convert kg to grams', 1),),
        example_input='2.5',
        example_output=2500,
    ),
    TransformationTemplate(
        id='conditional',
        name='Conditional Mapping',
        description='Map values based on conditions',
        category='Logic',
        rules=(TransformationRule(
            'condition', 'if_then_else',
            {'condition': 'value > 100', 'trueValue': 'HIGH', 'falseValue': 'LOW'},
            'Categorize based on value', 1
        ),),
        example_input=150,
        example_output='HIGH',
    ),
)


def template_categories() -> list[str]:
    """'All' followed by each template category in first-seen order."""
    categories = ['All']
    for template in TEMPLATES:
        if template.category not in categories:
            categories.append(template.category)
    return categories


def templates_by_category(category: str = 'All') -> list[TransformationTemplate]:
    if category == 'All':
        return list(TEMPLATES)
    return [t for t in TEMPLATES if t.category == category]


def get_template(template_id: str) -> Optional[TransformationTemplate]:
    for template in TEMPLATES:
        if template.id == template_id:
            return template
    return None
