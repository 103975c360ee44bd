"""
Expression Evaluator - Sandboxed evaluation of transformation expressions.

Transformation expressions are small JavaScript-style expressions over a
single bound input named ``value``, e.g.::

    parseFloat(value) * 1000
    (value > 100) ? 'HIGH' : 'LOW'
    new Date(value).toISOString()

Expressions are tokenized and parsed into a small syntax tree which is then
walked by an interpreter. Nothing is ever handed to Python's own eval, and
the interpreter only knows about:
- the input value (and keys/indexes of dict and list inputs)
- literals and the JavaScript operators (ternary, logical, equality,
  relational, arithmetic, unary)
- whitelisted globals: parseFloat, parseInt, Number, String, Boolean, isNaN,
  Math and the Date constructor
- a fixed set of string, number, array and date methods

There are no statements, assignments, loops or attribute lookups on host
objects. Every evaluation runs in a fresh interpreter.
"""
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Optional

import pandas as pd

from ..config.settings import get_settings
from ..errors import EvaluationError
from .models import EvaluationResult

logger = logging.getLogger(__name__)

INPUT_NAME = 'value'
MAX_DEPTH = 32


class _Undefined:
    """The JavaScript ``undefined`` value."""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return 'undefined'

    def __bool__(self):
        return False


UNDEFINED = _Undefined()


# Tokenizer

@dataclass(frozen=True)
class Token:
    kind: str  # num, str, name, op, eof
    value: Any
    pos: int


OPERATORS = [
    '===', '!==', '==', '!=', '<=', '>=', '&&', '||',
    '<', '>', '+', '-', '*', '/', '%', '!', '?', ':', '.', ',', '(', ')', '[', ']',
]

STRING_ESCAPES = {'n': '\n', 't': '\t', 'r': '\r', 'b': '\b', 'f': '\f', 'v': '\v', '0': '\0'}

_NUMBER_RE = re.compile(r'(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?')
_NAME_RE = re.compile(r'[A-Za-z_$][A-Za-z0-9_$]*')


def tokenize(source: str) -> list[Token]:
    tokens = []
    i = 0
    n = len(source)
    while i < n:
        ch = source[i]
        if ch.isspace():
            i += 1
            continue

        if ch.isdigit() or (ch == '.' and i + 1 < n and source[i + 1].isdigit()):
            match = _NUMBER_RE.match(source, i)
            text = match.group(0)
            number = float(text)
            tokens.append(Token('num', int(number) if number.is_integer() and 'e' not in text.lower() else number, i))
            i = match.end()
            continue

        if ch == "'" or ch == '"':
            text, i = _read_string(source, i)
            tokens.append(Token('str', text, i))
            continue

        match = _NAME_RE.match(source, i)
        if match:
            tokens.append(Token('name', match.group(0), i))
            i = match.end()
            continue

        for op in OPERATORS:
            if source.startswith(op, i):
                tokens.append(Token('op', op, i))
                i += len(op)
                break
        else:
            raise EvaluationError(f"Invalid or unexpected token '{ch}'")

    tokens.append(Token('eof', None, n))
    return tokens


def _read_string(source: str, start: int) -> tuple[str, int]:
    quote = source[start]
    chars = []
    i = start + 1
    while i < len(source):
        ch = source[i]
        if ch == quote:
            return ''.join(chars), i + 1
        if ch == '\\' and i + 1 < len(source):
            nxt = source[i + 1]
            chars.append(STRING_ESCAPES.get(nxt, nxt))
            i += 2
            continue
        if ch == '\n':
            break
        chars.append(ch)
        i += 1
    raise EvaluationError("Invalid or unexpected token: unterminated string literal")


# Syntax tree

@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class Name:
    name: str


@dataclass(frozen=True)
class Unary:
    op: str
    operand: Any


@dataclass(frozen=True)
class Binary:
    op: str
    left: Any
    right: Any


@dataclass(frozen=True)
class Conditional:
    test: Any
    consequent: Any
    alternate: Any


@dataclass(frozen=True)
class Member:
    obj: Any
    prop: Any  # str for dotted access, a node for [computed] access
    computed: bool = False


@dataclass(frozen=True)
class Call:
    callee: Any
    args: tuple


@dataclass(frozen=True)
class New:
    name: str
    args: tuple


LITERAL_NAMES = {
    'true': True,
    'false': False,
    'null': None,
    'undefined': UNDEFINED,
    'NaN': math.nan,
    'Infinity': math.inf,
}

BINARY_PRECEDENCE = [
    ('||',),
    ('&&',),
    ('==', '!=', '===', '!=='),
    ('<', '>', '<=', '>='),
    ('+', '-'),
    ('*', '/', '%'),
]


class Parser:
    """Recursive-descent parser for a single expression."""

    def __init__(self, source: str):
        self.tokens = tokenize(source)
        self.index = 0
        self.depth = 0

    @property
    def current(self) -> Token:
        return self.tokens[self.index]

    def advance(self) -> Token:
        token = self.tokens[self.index]
        self.index += 1
        return token

    def accept(self, op: str) -> bool:
        if self.current.kind == 'op' and self.current.value == op:
            self.index += 1
            return True
        return False

    def expect(self, op: str):
        if not self.accept(op):
            self.unexpected()

    def unexpected(self):
        token = self.current
        if token.kind == 'eof':
            raise EvaluationError("Unexpected end of input")
        if token.kind == 'str':
            raise EvaluationError("Unexpected string")
        if token.kind == 'num':
            raise EvaluationError("Unexpected number")
        if token.kind == 'name':
            raise EvaluationError(f"Unexpected identifier '{token.value}'")
        raise EvaluationError(f"Unexpected token '{token.value}'")

    def parse(self):
        if self.current.kind == 'eof':
            raise EvaluationError("Expression is empty")
        node = self.expression()
        if self.current.kind != 'eof':
            self.unexpected()
        return node

    def expression(self):
        self.depth += 1
        if self.depth > MAX_DEPTH:
            raise EvaluationError("Expression is too deeply nested")
        try:
            return self.conditional()
        finally:
            self.depth -= 1

    def conditional(self):
        test = self.binary(0)
        if self.accept('?'):
            consequent = self.expression()
            self.expect(':')
            alternate = self.expression()
            return Conditional(test, consequent, alternate)
        return test

    def binary(self, level: int):
        if level == len(BINARY_PRECEDENCE):
            return self.unary()
        node = self.binary(level + 1)
        ops = BINARY_PRECEDENCE[level]
        while self.current.kind == 'op' and self.current.value in ops:
            op = self.advance().value
            node = Binary(op, node, self.binary(level + 1))
        return node

    def unary(self):
        if self.current.kind == 'op' and self.current.value in ('!', '-', '+'):
            op = self.advance().value
            self.depth += 1
            if self.depth > MAX_DEPTH:
                raise EvaluationError("Expression is too deeply nested")
            try:
                return Unary(op, self.unary())
            finally:
                self.depth -= 1
        return self.postfix(self.primary())

    def postfix(self, node):
        while True:
            if self.accept('.'):
                token = self.advance()
                if token.kind != 'name':
                    self.index -= 1
                    self.unexpected()
                node = Member(node, token.value)
            elif self.accept('['):
                node = Member(node, self.expression(), computed=True)
                self.expect(']')
            elif self.accept('('):
                node = Call(node, self.arguments())
            else:
                return node

    def arguments(self) -> tuple:
        args = []
        if self.accept(')'):
            return ()
        while True:
            args.append(self.expression())
            if self.accept(')'):
                return tuple(args)
            self.expect(',')

    def primary(self):
        token = self.current
        if token.kind in ('num', 'str'):
            self.advance()
            return Literal(token.value)
        if token.kind == 'name':
            self.advance()
            if token.value == 'new':
                return self.new_expression()
            if token.value in LITERAL_NAMES:
                return Literal(LITERAL_NAMES[token.value])
            return Name(token.value)
        if self.accept('('):
            node = self.expression()
            self.expect(')')
            return node
        self.unexpected()

    def new_expression(self):
        token = self.advance()
        if token.kind != 'name':
            self.index -= 1
            self.unexpected()
        args = self.arguments() if self.accept('(') else ()
        return New(token.value, args)


def parse(source: str):
    return Parser(source).parse()


# Values and coercion

class JsDate:
    """A Date holding milliseconds since the epoch (UTC); None when invalid."""

    def __init__(self, ms: Optional[int]):
        self.ms = ms

    @classmethod
    def construct(cls, args: list) -> 'JsDate':
        if not args:
            return cls(pd.Timestamp.now(tz='UTC').value // 1_000_000)
        arg = args[0]
        if isinstance(arg, JsDate):
            return cls(arg.ms)
        if is_number(arg):
            return cls(None if not math.isfinite(arg) else int(arg))
        if not isinstance(arg, str):
            return cls(None)
        try:
            ts = pd.to_datetime(arg.strip(), utc=True)
        except (ValueError, TypeError, OverflowError):
            return cls(None)
        if pd.isna(ts):
            return cls(None)
        return cls(ts.value // 1_000_000)

    @property
    def timestamp(self) -> pd.Timestamp:
        if self.ms is None:
            raise EvaluationError("RangeError: Invalid time value")
        return pd.Timestamp(self.ms, unit='ms', tz='UTC')

    def to_iso_string(self) -> str:
        ts = self.timestamp
        return f"{ts.strftime('%Y-%m-%dT%H:%M:%S')}.{self.ms % 1000:03d}Z"

    def __str__(self):
        if self.ms is None:
            return 'Invalid Date'
        return self.to_iso_string()


class JsFunction:
    """A whitelisted callable exposed to expressions."""

    def __init__(self, name: str, fn):
        self.name = name
        self.fn = fn

    def __call__(self, args: list):
        return self.fn(*args)


def is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def type_name(value) -> str:
    if value is UNDEFINED:
        return 'undefined'
    if value is None:
        return 'null'
    if isinstance(value, bool):
        return 'boolean'
    if is_number(value):
        return 'number'
    if isinstance(value, str):
        return 'string'
    if isinstance(value, JsFunction):
        return 'function'
    return 'object'


def number_to_string(value) -> str:
    if isinstance(value, int):
        return str(value)
    if math.isnan(value):
        return 'NaN'
    if math.isinf(value):
        return 'Infinity' if value > 0 else '-Infinity'
    if value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    return repr(value)


def to_string(value) -> str:
    if value is UNDEFINED:
        return 'undefined'
    if value is None:
        return 'null'
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if is_number(value):
        return number_to_string(value)
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return ','.join('' if v is None or v is UNDEFINED else to_string(v) for v in value)
    if isinstance(value, JsDate):
        return str(value)
    if isinstance(value, JsFunction):
        return f"function {value.name}() {{ [native code] }}"
    return '[object Object]'


_NUMERIC_STRING_RE = re.compile(r'^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$')


def to_number(value):
    if value is UNDEFINED:
        return math.nan
    if value is None:
        return 0
    if isinstance(value, bool):
        return 1 if value else 0
    if is_number(value):
        return value
    if isinstance(value, JsDate):
        return math.nan if value.ms is None else value.ms
    if isinstance(value, list):
        return to_number(to_string(value))
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0
        if text in ('Infinity', '+Infinity'):
            return math.inf
        if text == '-Infinity':
            return -math.inf
        if re.match(r'^0[xX][0-9a-fA-F]+$', text):
            return int(text, 16)
        if _NUMERIC_STRING_RE.match(text):
            number = float(text)
            return int(number) if number.is_integer() and abs(number) < 2 ** 53 else number
        return math.nan
    return math.nan


def truthy(value) -> bool:
    if value is UNDEFINED or value is None:
        return False
    if isinstance(value, bool):
        return value
    if is_number(value):
        return not (value == 0 or math.isnan(value))
    if isinstance(value, str):
        return value != ''
    return True


def to_primitive(value):
    if isinstance(value, (list, dict, JsDate, JsFunction)):
        return to_string(value)
    return value


def strict_equals(left, right) -> bool:
    if is_number(left) and is_number(right):
        return left == right
    if type_name(left) != type_name(right):
        return False
    if isinstance(left, (list, dict, JsDate, JsFunction)):
        return left is right
    return left == right


def loose_equals(left, right) -> bool:
    left_null = left is None or left is UNDEFINED
    right_null = right is None or right is UNDEFINED
    if left_null or right_null:
        return left_null and right_null
    if type_name(left) == type_name(right):
        return strict_equals(left, right)
    if isinstance(left, bool):
        return loose_equals(to_number(left), right)
    if isinstance(right, bool):
        return loose_equals(left, to_number(right))
    if is_number(left) and isinstance(right, str):
        return left == to_number(right)
    if isinstance(left, str) and is_number(right):
        return to_number(left) == right
    if isinstance(left, (list, dict, JsDate)) and not isinstance(right, (list, dict, JsDate)):
        return loose_equals(to_primitive(left), right)
    if isinstance(right, (list, dict, JsDate)) and not isinstance(left, (list, dict, JsDate)):
        return loose_equals(left, to_primitive(right))
    return False


def _divide(left, right):
    if right == 0:
        if left == 0 or math.isnan(left):
            return math.nan
        return math.copysign(math.inf, left) * math.copysign(1, right)
    result = left / right
    return int(result) if isinstance(left, int) and isinstance(right, int) and result.is_integer() else result


def _modulo(left, right):
    if right == 0 or math.isinf(left) or math.isnan(left) or math.isnan(right):
        return math.nan
    if math.isinf(right):
        return left
    result = math.fmod(left, right)
    return int(result) if isinstance(left, int) and isinstance(right, int) else result


def arithmetic(op: str, left, right):
    if op == '+':
        left, right = to_primitive(left), to_primitive(right)
        if isinstance(left, str) or isinstance(right, str):
            return to_string(left) + to_string(right)
    left, right = to_number(left), to_number(right)
    if op == '+':
        return left + right
    if op == '-':
        return left - right
    if op == '*':
        if math.isinf(left) and right == 0 or math.isinf(right) and left == 0:
            return math.nan
        return left * right
    if op == '/':
        return _divide(left, right)
    return _modulo(left, right)


def compare(op: str, left, right) -> bool:
    left, right = to_primitive(left), to_primitive(right)
    if not (isinstance(left, str) and isinstance(right, str)):
        left, right = to_number(left), to_number(right)
        if math.isnan(left) or math.isnan(right):
            return False
    if op == '<':
        return left < right
    if op == '>':
        return left > right
    if op == '<=':
        return left <= right
    return left >= right


# Built-ins

_FLOAT_PREFIX_RE = re.compile(r'^[+-]?(Infinity|(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?)')
_DIGITS = '0123456789abcdefghijklmnopqrstuvwxyz'


def parse_float(value=UNDEFINED, *_):
    text = to_string(value).lstrip()
    match = _FLOAT_PREFIX_RE.match(text)
    if not match:
        return math.nan
    token = match.group(0)
    if token.lstrip('+-') == 'Infinity':
        return -math.inf if token.startswith('-') else math.inf
    number = float(token)
    return int(number) if number.is_integer() and abs(number) < 2 ** 53 else number


def parse_int(value=UNDEFINED, radix=UNDEFINED, *_):
    text = to_string(value).strip()
    sign = 1
    if text[:1] in ('+', '-'):
        sign = -1 if text[0] == '-' else 1
        text = text[1:]

    radix = to_number(radix) if radix is not UNDEFINED else 0
    radix = 0 if math.isnan(radix) else int(radix)
    if radix == 0:
        radix = 10
        if text[:2].lower() == '0x':
            radix = 16
            text = text[2:]
    elif radix == 16 and text[:2].lower() == '0x':
        text = text[2:]
    if radix < 2 or radix > 36:
        return math.nan

    valid = _DIGITS[:radix]
    digits = ''
    for ch in text.lower():
        if ch not in valid:
            break
        digits += ch
    if not digits:
        return math.nan
    return sign * int(digits, radix)


def is_nan(value=UNDEFINED, *_):
    return math.isnan(to_number(value))


def _math_round(x=UNDEFINED, *_):
    x = to_number(x)
    if math.isnan(x) or math.isinf(x):
        return x
    return int(math.floor(x + 0.5))


def _math_number(fn):
    def wrapped(x=UNDEFINED, *_):
        x = to_number(x)
        if math.isnan(x) or math.isinf(x):
            return x
        return fn(x)
    return wrapped


def _math_extreme(pick, empty):
    def wrapped(*args):
        numbers = [to_number(a) for a in args]
        if any(math.isnan(n) for n in numbers):
            return math.nan
        return pick(numbers) if numbers else empty
    return wrapped


def _math_pow(x=UNDEFINED, y=UNDEFINED, *_):
    x, y = float(to_number(x)), float(to_number(y))
    if math.isnan(y) or (abs(x) == 1 and math.isinf(y)):
        return math.nan
    if x < 0 and not math.isinf(y) and not y.is_integer():
        return math.nan
    try:
        return x ** y
    except OverflowError:
        return -math.inf if x < 0 and y % 2 == 1 else math.inf
    except ZeroDivisionError:
        return math.inf


MATH_MEMBERS = {
    'round': JsFunction('round', _math_round),
    'floor': JsFunction('floor', _math_number(lambda x: int(math.floor(x)))),
    'ceil': JsFunction('ceil', _math_number(lambda x: int(math.ceil(x)))),
    'abs': JsFunction('abs', lambda x=UNDEFINED, *_: abs(to_number(x))),
    'min': JsFunction('min', _math_extreme(min, math.inf)),
    'max': JsFunction('max', _math_extreme(max, -math.inf)),
    'pow': JsFunction('pow', _math_pow),
    'PI': math.pi,
}


class MathNamespace:
    """The read-only ``Math`` global."""


MATH = MathNamespace()

GLOBALS = {
    'parseFloat': JsFunction('parseFloat', parse_float),
    'parseInt': JsFunction('parseInt', parse_int),
    'Number': JsFunction('Number', lambda x=0, *_: to_number(x)),
    'String': JsFunction('String', lambda x='', *_: to_string(x)),
    'Boolean': JsFunction('Boolean', lambda x=UNDEFINED, *_: truthy(x)),
    'isNaN': JsFunction('isNaN', is_nan),
    'Math': MATH,
}

CONSTRUCTORS = {
    'Date': JsDate.construct,
}


def _to_fixed(number, digits=0):
    digits = int(to_number(digits) or 0)
    if not 0 <= digits <= 100:
        raise EvaluationError("RangeError: toFixed() digits argument must be between 0 and 100")
    if math.isnan(number):
        return 'NaN'
    if math.isinf(number):
        return number_to_string(number)
    return f"{number:.{digits}f}"


def _slice_bounds(length: int, start, end) -> tuple[int, int]:
    def clamp(index, default):
        if index is UNDEFINED:
            return default
        index = to_number(index)
        if math.isnan(index):
            return 0
        index = int(index)
        if index < 0:
            index = max(length + index, 0)
        return min(index, length)
    return clamp(start, 0), clamp(end, length)


def _substring(text: str, start=UNDEFINED, end=UNDEFINED):
    def clamp(index, default):
        if index is UNDEFINED:
            return default
        index = to_number(index)
        if math.isnan(index):
            return 0
        return min(max(int(index), 0), len(text))
    a, b = clamp(start, 0), clamp(end, len(text))
    return text[min(a, b):max(a, b)]


def _index_of(text: str, search=UNDEFINED, *_):
    return text.find(to_string(search))


def string_method(text: str, name: str):
    methods = {
        'toUpperCase': lambda *_: text.upper(),
        'toLowerCase': lambda *_: text.lower(),
        'trim': lambda *_: text.strip(),
        'toString': lambda *_: text,
        'valueOf': lambda *_: text,
        'includes': lambda s=UNDEFINED, *_: to_string(s) in text,
        'startsWith': lambda s=UNDEFINED, *_: text.startswith(to_string(s)),
        'endsWith': lambda s=UNDEFINED, *_: text.endswith(to_string(s)),
        'indexOf': lambda *a: _index_of(text, *a),
        'charAt': lambda i=0, *_: text[int(to_number(i))] if 0 <= int(to_number(i)) < len(text) else '',
        'slice': lambda start=UNDEFINED, end=UNDEFINED, *_: text[slice(*_slice_bounds(len(text), start, end))],
        'substring': lambda *a: _substring(text, *a),
        'replace': lambda old=UNDEFINED, new=UNDEFINED, *_: text.replace(to_string(old), to_string(new), 1),
        'split': lambda sep=UNDEFINED, *_: [text] if sep is UNDEFINED else (
            list(text) if to_string(sep) == '' else text.split(to_string(sep))
        ),
    }
    return methods.get(name)


def number_method(number, name: str):
    methods = {
        'toFixed': lambda digits=0, *_: _to_fixed(number, digits),
        'toString': lambda *_: number_to_string(number),
        'valueOf': lambda *_: number,
    }
    return methods.get(name)


def array_method(items: list, name: str):
    methods = {
        'join': lambda sep=',', *_: (',' if sep is UNDEFINED else to_string(sep)).join(
            '' if v is None or v is UNDEFINED else to_string(v) for v in items
        ),
        'includes': lambda x=UNDEFINED, *_: any(strict_equals(v, x) for v in items),
        'indexOf': lambda x=UNDEFINED, *_: next((i for i, v in enumerate(items) if strict_equals(v, x)), -1),
        'toString': lambda *_: to_string(items),
    }
    return methods.get(name)


def date_method(date: JsDate, name: str):
    methods = {
        'toISOString': lambda *_: date.to_iso_string(),
        'toJSON': lambda *_: date.to_iso_string() if date.ms is not None else None,
        'getTime': lambda *_: math.nan if date.ms is None else date.ms,
        'valueOf': lambda *_: math.nan if date.ms is None else date.ms,
        'getFullYear': lambda *_: math.nan if date.ms is None else date.timestamp.year,
        'getMonth': lambda *_: math.nan if date.ms is None else date.timestamp.month - 1,
        'getDate': lambda *_: math.nan if date.ms is None else date.timestamp.day,
        'toString': lambda *_: str(date),
    }
    return methods.get(name)


def property_key(value) -> str:
    return value if isinstance(value, str) else to_string(value)


class Interpreter:
    """Walks a parsed expression with ``value`` bound to the input."""

    def __init__(self, input_value):
        self.scope = {INPUT_NAME: from_python(input_value)}

    def run(self, node):
        return getattr(self, f"eval_{type(node).__name__.lower()}")(node)

    def eval_literal(self, node: Literal):
        return node.value

    def eval_name(self, node: Name):
        if node.name in self.scope:
            return self.scope[node.name]
        if node.name in GLOBALS:
            return GLOBALS[node.name]
        raise EvaluationError(f"ReferenceError: {node.name} is not defined")

    def eval_unary(self, node: Unary):
        operand = self.run(node.operand)
        if node.op == '!':
            return not truthy(operand)
        number = to_number(operand)
        return -number if node.op == '-' else number

    def eval_binary(self, node: Binary):
        # Left operand chains ("1 + 2 + ...") are walked in a loop, not recursively
        chain = []
        while isinstance(node, Binary):
            chain.append(node)
            node = node.left
        value = self.run(node)
        for link in reversed(chain):
            value = self.apply_binary(link, value)
        return value

    def apply_binary(self, node: Binary, left):
        op = node.op
        if op == '&&':
            return self.run(node.right) if truthy(left) else left
        if op == '||':
            return left if truthy(left) else self.run(node.right)

        right = self.run(node.right)
        if op == '===':
            return strict_equals(left, right)
        if op == '!==':
            return not strict_equals(left, right)
        if op == '==':
            return loose_equals(left, right)
        if op == '!=':
            return not loose_equals(left, right)
        if op in ('<', '>', '<=', '>='):
            return compare(op, left, right)
        return arithmetic(op, left, right)

    def eval_conditional(self, node: Conditional):
        if truthy(self.run(node.test)):
            return self.run(node.consequent)
        return self.run(node.alternate)

    def member_key(self, node: Member) -> str:
        if node.computed:
            return property_key(self.run(node.prop))
        return node.prop

    def eval_member(self, node: Member):
        obj = self.run(node.obj)
        key = self.member_key(node)
        return self.get_property(obj, key)

    def get_property(self, obj, key: str):
        if obj is None or obj is UNDEFINED:
            raise EvaluationError(
                f"TypeError: Cannot read properties of {to_string(obj)} (reading '{key}')"
            )
        if isinstance(obj, dict):
            return obj.get(key, UNDEFINED)
        if isinstance(obj, (str, list)):
            if key == 'length':
                return len(obj)
            if key.isdigit() and int(key) < len(obj):
                return obj[int(key)]
            return UNDEFINED
        if obj is MATH:
            return MATH_MEMBERS.get(key, UNDEFINED)
        return UNDEFINED

    def find_method(self, obj, key: str):
        if isinstance(obj, str):
            return string_method(obj, key)
        if isinstance(obj, bool):
            return {'toString': lambda *_: to_string(obj)}.get(key)
        if is_number(obj):
            return number_method(obj, key)
        if isinstance(obj, list):
            return array_method(obj, key)
        if isinstance(obj, JsDate):
            return date_method(obj, key)
        return None

    def eval_call(self, node: Call):
        if isinstance(node.callee, Member):
            obj = self.run(node.callee.obj)
            key = self.member_key(node.callee)
            args = [self.run(a) for a in node.args]

            prop = self.get_property(obj, key)
            if isinstance(prop, JsFunction):
                return prop(args)
            method = self.find_method(obj, key)
            if method is None:
                raise EvaluationError(f"TypeError: {describe(node.callee)} is not a function")
            return method(*args)

        callee = self.run(node.callee)
        args = [self.run(a) for a in node.args]
        if not isinstance(callee, JsFunction):
            raise EvaluationError(f"TypeError: {describe(node.callee)} is not a function")
        return callee(args)

    def eval_new(self, node: New):
        constructor = CONSTRUCTORS.get(node.name)
        if constructor is None:
            if node.name in GLOBALS or node.name in self.scope:
                raise EvaluationError(f"TypeError: {node.name} is not a constructor")
            raise EvaluationError(f"ReferenceError: {node.name} is not defined")
        return constructor([self.run(a) for a in node.args])


def describe(node) -> str:
    """Source-like rendering of a callee for error messages."""
    if isinstance(node, Name):
        return node.name
    if isinstance(node, Member):
        if node.computed:
            return f"{describe(node.obj)}[...]"
        return f"{describe(node.obj)}.{node.prop}"
    if isinstance(node, Call):
        return f"{describe(node.callee)}(...)"
    return 'expression'


def from_python(value):
    """Convert an input value into interpreter values."""
    if isinstance(value, tuple):
        value = list(value)
    if isinstance(value, list):
        return [from_python(v) for v in value]
    if isinstance(value, dict):
        return {str(k): from_python(v) for k, v in value.items()}
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    return str(value)


def to_python(value):
    """Convert an interpreter value back into a plain Python value."""
    if value is UNDEFINED:
        return None
    if isinstance(value, float) and value.is_integer() and abs(value) < 2 ** 53:
        return int(value)
    if isinstance(value, list):
        return [to_python(v) for v in value]
    if isinstance(value, dict):
        return {k: to_python(v) for k, v in value.items()}
    if isinstance(value, JsDate):
        return value.to_iso_string() if value.ms is not None else None
    if isinstance(value, (JsFunction, MathNamespace)):
        return to_string(value) if isinstance(value, JsFunction) else '[object Math]'
    return value


class ExpressionEvaluator:
    """
    Evaluates transformation expressions against a single input value.

    Never raises: every failure comes back as an invalid EvaluationResult
    carrying the error message.
    """

    def __init__(self, max_length: Optional[int] = None):
        self.max_length = max_length or get_settings().max_expression_length

    def compile(self, expression: str):
        if not isinstance(expression, str):
            raise EvaluationError("Expression must be a string")
        if len(expression) > self.max_length:
            raise EvaluationError(f"Expression exceeds {self.max_length} characters")
        return parse(expression)

    def validate(self, expression: str) -> EvaluationResult:
        """Check that an expression parses, without evaluating it."""
        try:
            self.compile(expression)
        except EvaluationError as e:
            return EvaluationResult(is_valid=False, error=str(e))
        return EvaluationResult(is_valid=True)

    def evaluate(self, expression: str, input_value: Any = None) -> EvaluationResult:
        try:
            tree = self.compile(expression)
            value = Interpreter(input_value).run(tree)
        except EvaluationError as e:
            logger.warning("Expression evaluation failed: %s", e)
            return EvaluationResult(is_valid=False, error=str(e))
        except RecursionError:
            logger.warning("Expression evaluation failed: nesting too deep")
            return EvaluationResult(is_valid=False, error="Expression is too deeply nested")
        except (ArithmeticError, ValueError, TypeError, IndexError) as e:
            logger.warning("Expression evaluation failed: %s", e)
            return EvaluationResult(is_valid=False, error=str(e) or type(e).__name__)
        return EvaluationResult(is_valid=True, value=to_python(value))


def evaluate(expression: str, input_value: Any = None) -> EvaluationResult:
    """Evaluate an expression with ``value`` bound to input_value."""
    return ExpressionEvaluator().evaluate(expression, input_value)


def validate_expression(expression: str) -> EvaluationResult:
    return ExpressionEvaluator().validate(expression)
