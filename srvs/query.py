"""Flat boolean queries over plaintext attribute records.

A query is an ordered list of comparisons joined by a single combinator
(``AND`` or ``OR``), e.g. ``age >= 25 AND occupation = 'Doctor'``. There is
no nesting and no mixed precedence.

Evaluation never raises: a comparison on a missing attribute is false, and
ordering operators (``>``, ``>=``, ``<``, ``<=``) on anything but numbers are
false.
"""
import operator
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from .errors import QueryParseError

ORDERING = {
    '>': operator.gt,
    '>=': operator.ge,
    '<': operator.lt,
    '<=': operator.le,
}
OPERATORS = ('=', '!=') + tuple(ORDERING)
COMBINATORS = ('AND', 'OR')
DEFAULT_QUERY = 'age >= 18 AND age <= 65'

TOKEN_RE = re.compile(r"""\s*(?:
    (?P<str>'(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*")
  | (?P<op>>=|<=|!=|==|=|>|<)
  | (?P<word>[^\s'"<>=!]+)
)""", re.X)
INT_RE = re.compile(r'^-?\d+$')
FLOAT_RE = re.compile(r'^-?\d+\.\d+$')


@dataclass
class Condition:
    attribute: str
    operator: str
    value: Any

    def to_dict(self) -> dict:
        return {'attr': self.attribute, 'op': self.operator, 'value': self.value}

    @classmethod
    def from_dict(cls, d: dict) -> 'Condition':
        # accepts both the wire form {attr, op} and the long form {attribute, operator}
        return cls(d.get('attribute', d.get('attr')), d.get('operator', d.get('op')), d.get('value'))


@dataclass
class Query:
    conditions: List[Condition] = field(default_factory=list)
    logic: str = 'AND'

    @property
    def text(self) -> str:
        return format_query(self.conditions, self.logic)

    def to_dict(self) -> dict:
        return {'query': self.text, 'conditions': [c.to_dict() for c in self.conditions], 'logic': self.logic}

    @classmethod
    def from_dict(cls, d: dict) -> 'Query':
        return cls([Condition.from_dict(c) for c in d.get('conditions') or []], (d.get('logic') or 'AND').upper())


def _is_number(v) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def _equals(a, b) -> bool:
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    return a == b


def compare(actual, op: str, expected) -> bool:
    if op == '=':
        return _equals(actual, expected)
    if op == '!=':
        return not _equals(actual, expected)
    fn = ORDERING.get(op)
    if fn is None:
        return False
    if not (_is_number(actual) and _is_number(expected)):
        return False
    return fn(actual, expected)


def evaluate(record: Dict[str, Any], conditions: Iterable, logic: str = 'AND') -> bool:
    """Evaluate conditions against record, combined uniformly by logic."""
    results = []
    for c in conditions:
        if isinstance(c, dict):
            c = Condition.from_dict(c)
        if c.attribute not in record:
            results.append(False)
            continue
        results.append(compare(record[c.attribute], c.operator, c.value))
    logic = (logic or '').upper()
    if logic == 'AND':
        return all(results)
    if logic == 'OR':
        return any(results)
    return False


def evaluate_query(record: Dict[str, Any], query) -> bool:
    """Evaluate a Query, a ``{conditions, logic}`` dict or query text."""
    if isinstance(query, str):
        query = parse_query(query)
    elif isinstance(query, dict):
        query = Query.from_dict(query)
    return evaluate(record, query.conditions, query.logic)


def _literal(tok_type: str, raw: str):
    if tok_type == 'str':
        body = raw[1:-1]
        return re.sub(r'\\(.)', r'\1', body)
    low = raw.lower()
    if low == 'true':
        return True
    if low == 'false':
        return False
    if INT_RE.match(raw):
        return int(raw)
    if FLOAT_RE.match(raw):
        return float(raw)
    return raw


def _tokenize(text: str) -> List[tuple]:
    tokens = []
    pos = 0
    end = len(text.rstrip())
    while pos < end:
        m = TOKEN_RE.match(text, pos)
        if not m or m.end() == pos:
            raise QueryParseError(f'unexpected input at position {pos}: {text[pos:pos + 10]!r}')
        kind = m.lastgroup
        tokens.append((kind, m.group(kind)))
        pos = m.end()
    return tokens


def parse_query(text: str) -> Query:
    """Parse ``attr op value [AND|OR attr op value ...]`` into a Query.

    Raises QueryParseError on malformed input or when AND and OR are mixed.
    """
    if not text or not text.strip():
        raise QueryParseError('empty query')
    tokens = _tokenize(text)
    conditions = []
    logic = None
    i = 0
    while True:
        if i + 3 > len(tokens):
            raise QueryParseError(f'incomplete condition in query: {text!r}')
        (k_attr, attr), (k_op, op), (k_val, val) = tokens[i:i + 3]
        if k_attr != 'word' or k_op != 'op' or k_val == 'op':
            raise QueryParseError(f'expected "attribute operator value" in query: {text!r}')
        if op == '==':
            op = '='
        conditions.append(Condition(attr, op, _literal(k_val, val)))
        i += 3
        if i == len(tokens):
            break
        k_comb, comb = tokens[i]
        comb = comb.upper()
        if k_comb != 'word' or comb not in COMBINATORS:
            raise QueryParseError(f'expected AND/OR, got {tokens[i][1]!r}')
        if logic and comb != logic:
            raise QueryParseError('mixing AND and OR in one query is not supported')
        logic = comb
        i += 1
    return Query(conditions, logic or 'AND')


def _format_value(v) -> str:
    if isinstance(v, bool):
        return 'true' if v else 'false'
    if _is_number(v):
        return str(v)
    s = str(v).replace('\\', '\\\\').replace("'", "\\'")
    return f"'{s}'"


def format_query(conditions: Iterable[Condition], logic: str = 'AND') -> str:
    parts = [f'{c.attribute} {c.operator} {_format_value(c.value)}' for c in conditions]
    return f' {logic} '.join(parts)


# categorical attributes and the value assumed when a record lacks one
CATEGORICAL_DEFAULTS = {
    'gender': 'Male',
    'location': 'New York',
    'education': 'Bachelor',
    'industry': 'Technology',
    'seniority': 'Mid',
    'department': 'Engineering',
    'company_size': '51-200',
}


def build_query(attributes: Optional[Iterable[str]], record: Optional[Dict[str, Any]] = None) -> Query:
    """Derive an AND query that a respondent's own values satisfy.

    Numeric attributes become ranges around the respondent's value, the rest
    become equality checks. With no attributes the adult age range is used.
    """
    record = record or {}
    conditions = []
    for attr in attributes or []:
        key = attr.lower().replace(' ', '_')
        if key == 'age':
            age = record.get('age') or 30
            conditions.append(Condition('age', '>=', max(18, age - 5)))
            conditions.append(Condition('age', '<=', min(65, age + 10)))
        elif key == 'income':
            income = record.get('income') or 50000
            conditions.append(Condition('income', '>=', int(income * 0.8)))
            conditions.append(Condition('income', '<=', int(income * 1.5)))
        elif key in ('occupation', 'job_title'):
            field_name = 'occupation' if 'occupation' in record and 'job_title' not in record else 'job_title'
            value = record.get('job_title') or record.get('occupation') or 'Engineer'
            conditions.append(Condition(field_name, '=', value))
        elif key in CATEGORICAL_DEFAULTS:
            conditions.append(Condition(key, '=', record.get(key) or CATEGORICAL_DEFAULTS[key]))
        elif record.get(key):
            conditions.append(Condition(key, '=', record[key]))
    if not conditions:
        return parse_query(DEFAULT_QUERY)
    return Query(conditions, 'AND')
