import pytest

from srvs.errors import QueryParseError
from srvs.query import (Condition, Query, build_query, evaluate, evaluate_query,
                        format_query, parse_query)


DOCTOR_QUERY = "age > 25 AND occupation = 'Doctor'"


def test_doctor_over_25_matches():
    assert evaluate_query({'age': 30, 'occupation': 'Doctor'}, DOCTOR_QUERY) is True


def test_doctor_under_25_does_not_match():
    assert evaluate_query({'age': 20, 'occupation': 'Doctor'}, DOCTOR_QUERY) is False


@pytest.mark.parametrize('logic', ['AND', 'OR'])
def test_missing_attribute_is_false_for_either_combinator(logic):
    conditions = [Condition('age', '>', 25), Condition('occupation', '=', 'Doctor')]
    assert evaluate({'age': 20}, conditions, logic) is False


def test_missing_attribute_never_raises():
    assert evaluate({}, [Condition('income', '>=', 10)]) is False
    assert evaluate({}, [Condition('income', '!=', 10)]) is False


def test_or_needs_only_one_true():
    conditions = [Condition('age', '<', 18), Condition('occupation', '=', 'Doctor')]
    assert evaluate({'age': 40, 'occupation': 'Doctor'}, conditions, 'OR') is True
    assert evaluate({'age': 40, 'occupation': 'Doctor'}, conditions, 'AND') is False


def test_ordering_on_non_numbers_is_false():
    assert evaluate({'age': '30'}, [Condition('age', '>', 25)]) is False
    assert evaluate({'age': 30}, [Condition('age', '>', 'twenty')]) is False
    assert evaluate({'flag': True}, [Condition('flag', '>=', 0)]) is False


def test_unknown_operator_or_combinator_is_false():
    assert evaluate({'age': 30}, [Condition('age', '~', 30)]) is False
    assert evaluate({'age': 30}, [Condition('age', '=', 30)], 'XOR') is False


def test_equality_does_not_conflate_bools_and_ints():
    assert evaluate({'verified': True}, [Condition('verified', '=', 1)]) is False
    assert evaluate({'verified': True}, [Condition('verified', '=', True)]) is True


def test_wire_form_conditions_accepted():
    conditions = [{'attr': 'income', 'op': '>=', 'value': 40000}]
    assert evaluate({'income': 50000}, conditions) is True


def test_parse_literals():
    q = parse_query('age >= 18 AND ratio < 0.5 AND name = "O\'Neil" AND active = true')
    assert q.logic == 'AND'
    assert [c.value for c in q.conditions] == [18, 0.5, "O'Neil", True]
    assert [c.operator for c in q.conditions] == ['>=', '<', '=', '=']


def test_parse_or_query():
    q = parse_query("location = 'Chicago' OR location = 'Houston'")
    assert q.logic == 'OR'
    assert evaluate_query({'location': 'Houston'}, q) is True


@pytest.mark.parametrize('text', [
    '',
    'age >=',
    'age >= 18 AND',
    'age 18',
    "age >= 18 AND income > 5 OR location = 'X'",
    'age >= 18 NOT income > 5',
])
def test_malformed_queries_rejected(text):
    with pytest.raises(QueryParseError):
        parse_query(text)


def test_parse_error_is_a_value_error():
    with pytest.raises(ValueError):
        parse_query('age >= 18 OR income > 1 AND x = 2')


def test_format_then_parse_keeps_meaning():
    q = Query([Condition('age', '>=', 25), Condition('job_title', '=', 'Engineer')], 'AND')
    assert q.text == "age >= 25 AND job_title = 'Engineer'"
    assert parse_query(q.text) == q


def test_query_dict_form():
    d = parse_query(DOCTOR_QUERY).to_dict()
    assert d['query'] == DOCTOR_QUERY
    assert d['conditions'][0] == {'attr': 'age', 'op': '>', 'value': 25}
    assert evaluate_query({'age': 30, 'occupation': 'Doctor'}, d) is True


def test_build_query_default():
    assert build_query([]).text == 'age >= 18 AND age <= 65'


def test_build_query_is_satisfied_by_its_own_record():
    record = {'age': 28, 'income': 60000, 'occupation': 'Developer', 'education': 'Master'}
    q = build_query(['age', 'income', 'occupation', 'education'], record)
    assert q.logic == 'AND'
    assert evaluate_query(record, q) is True
    assert format_query(q.conditions[:2]) == 'age >= 23 AND age <= 38'


def test_build_query_uses_the_key_the_record_has():
    q = build_query(['job_title'], {'job_title': 'Data Analyst'})
    assert q.conditions == [Condition('job_title', '=', 'Data Analyst')]
    q = build_query(['occupation'], {'occupation': 'Nurse'})
    assert q.conditions == [Condition('occupation', '=', 'Nurse')]
