import json

from conftest import FakeDBError
from reimbursement_api.common_helpers import (
    build_date_filter,
    build_pagination,
    build_where_clause,
    error_code,
    handle_database_error,
    parse_search_param,
    validate_required_fields,
)


def body(response):
    return json.loads(response.body)


def test_pagination_caps_limit():
    assert build_pagination({'limit': '200'})['limit'] == 100


def test_pagination_floors_page():
    assert build_pagination({'page': '0'}) == {'limit': 50, 'offset': 0, 'page': 1}


def test_pagination_floors_negative_limit():
    assert build_pagination({'limit': '-5', 'page': '-2'}) == {'limit': 1, 'offset': 0, 'page': 1}


def test_pagination_offset():
    assert build_pagination({'limit': '20', 'page': '3'}) == {'limit': 20, 'offset': 40, 'page': 3}


def test_pagination_ignores_garbage():
    assert build_pagination({'limit': 'lots', 'page': None}, default_limit=10) == {'limit': 10, 'offset': 0, 'page': 1}


def test_where_clause_skips_empty_values():
    clause, params = build_where_clause({'status': 'active', 'code': '', 'department_id': None, 'name': 'x'})
    assert clause == 'WHERE status = :p1 AND name = :p2'
    assert params == {'p1': 'active', 'p2': 'x'}


def test_where_clause_empty():
    assert build_where_clause({}) == ('', {})


def test_date_filter_with_offset():
    clause, params = build_date_filter('2024-01-01', '2024-01-31', 'r.created_at', param_offset=1)
    assert clause == ' AND r.created_at >= :p2 AND r.created_at <= :p3'
    assert params == {'p2': '2024-01-01', 'p3': '2024-01-31T23:59:59.999000'}


def test_parse_search_param():
    assert parse_search_param('abc') == 'abc'
    assert parse_search_param(['a', 'b']) is None


def test_required_fields():
    assert validate_required_fields({'name': ' ', 'code': 'X'}, ['name', 'code', 'status']) == [
        'name is required',
        'status is required',
    ]


class TestDatabaseErrors:

    def test_unique_violation(self):
        response = handle_database_error(FakeDBError('duplicate key', '23505'), 'Department', 'create')
        assert response.status_code == 400
        assert body(response) == {'success': False, 'message': 'Department code already exists'}

    def test_foreign_key_violation(self):
        response = handle_database_error(FakeDBError('fk', '23503'), 'Cost center', 'update')
        assert response.status_code == 400
        assert body(response)['message'] == 'Invalid reference for Cost center'

    def test_other_errors_are_500(self):
        response = handle_database_error(RuntimeError('boom'), 'Project', 'update')
        assert response.status_code == 500
        assert body(response) == {'success': False, 'message': 'Failed to update Project', 'error': 'boom'}

    def test_error_code_unwraps_sqlalchemy_wrapper(self):
        class Wrapped(Exception):
            orig = FakeDBError('inner', '23505')

        assert error_code(Wrapped()) == '23505'
        assert error_code(ValueError()) is None
