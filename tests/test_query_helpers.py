import pytest

from conftest import FakeSession
from reimbursement_api.query_helpers import (
    DependencyExistsError,
    SelectSpec,
    build_insert_query,
    build_select_query,
    build_update_query,
    handle_create,
    handle_get_with_filters,
    handle_soft_delete,
    validate_name_and_code,
)


class TestValidateNameAndCode:

    def test_missing_name_and_code(self):
        errors = validate_name_and_code('', '')
        assert 'Name is required' in errors
        assert 'Code is required' in errors

    def test_additional_fields(self):
        assert validate_name_and_code('Ops', 'OPS', {'department_id': None}) == ['department_id is required']

    def test_valid(self):
        assert validate_name_and_code('Ops', 'OPS', {'department_id': 3}) == []


class TestBuildSelectQuery:

    def test_plain_table(self):
        query, params = build_select_query('projects')
        assert query == 'SELECT * FROM projects WHERE 1=1'
        assert params == {}

    def test_all_status_adds_no_predicate(self):
        query, _ = build_select_query('t', additional_filters={'status': 'all'})
        assert 'status =' not in query

    def test_status_and_search_are_qualified_with_alias(self):
        query, params = build_select_query(
            'departments',
            select_fields='d.*, COUNT(DISTINCT cc.id) AS cost_center_count',
            join_clause="LEFT JOIN cost_centers cc ON d.id = cc.department_id AND cc.status = 'active'",
            group_by='GROUP BY d.id',
            order_by='ORDER BY d.name ASC',
            additional_filters={'status': 'active', 'search': 'eng'},
        )
        assert query == (
            "SELECT d.*, COUNT(DISTINCT cc.id) AS cost_center_count FROM departments d "
            "LEFT JOIN cost_centers cc ON d.id = cc.department_id AND cc.status = 'active' "
            "WHERE 1=1 AND d.status = :p1 "
            "AND (d.name ILIKE :p2 ESCAPE '\\' OR d.code ILIKE :p2 ESCAPE '\\') "
            "GROUP BY d.id ORDER BY d.name ASC"
        )
        assert params == {'p1': 'active', 'p2': '%eng%'}

    def test_remaining_filters_become_equality_predicates(self):
        query, params = build_select_query(
            'cost_centers', table_alias='cc', additional_filters={'department_id': 7, 'status': None}
        )
        assert query == 'SELECT * FROM cost_centers cc WHERE 1=1 AND cc.department_id = :p1'
        assert params == {'p1': 7}

    def test_explicit_alias_wins_over_detection(self):
        spec = SelectSpec('projects', select_fields='x.*', table_alias='p')
        assert spec.resolve_alias() == 'p'

    def test_alias_detected_from_join(self):
        spec = SelectSpec('projects', select_fields='*', join_clause='LEFT JOIN reimbursements r ON p.id = r.project_id')
        assert spec.resolve_alias() == 'p'


def test_handle_get_with_filters_returns_row_dicts():
    db = FakeSession([[{'id': 1, 'name': 'Engineering'}]])
    rows = handle_get_with_filters(db, 'departments', additional_filters={'search': 'eng'})

    assert rows == [{'id': 1, 'name': 'Engineering'}]
    sql, params = db.executed[0]
    assert 'ILIKE :p1' in sql
    assert params == {'p1': '%eng%'}


def test_insert_query():
    query, params = build_insert_query('projects', ['name', 'code'], ['Alpha', 'PA'])
    assert query == 'INSERT INTO projects (name, code) VALUES (:p1, :p2) RETURNING *'
    assert params == {'p1': 'Alpha', 'p2': 'PA'}


def test_update_query_binds_id_last():
    query, params = build_update_query('projects', 9, ['name', 'code'], ['Alpha', 'PA'], returning='id')
    assert query == (
        'UPDATE projects SET name = :p1, code = :p2, updated_at = CURRENT_TIMESTAMP '
        'WHERE id = :p3 RETURNING id'
    )
    assert params == {'p1': 'Alpha', 'p2': 'PA', 'p3': 9}


def test_identifiers_are_checked():
    with pytest.raises(ValueError):
        build_insert_query('projects; DROP TABLE users', ['name'], ['x'])
    with pytest.raises(ValueError):
        handle_create(FakeSession(), 'projects', ['name--'], ['x'])


class TestSoftDelete:

    def test_blocked_by_active_cost_centers(self):
        db = FakeSession([[{'count': 5}]])

        with pytest.raises(DependencyExistsError) as excinfo:
            handle_soft_delete(db, 'departments', 1, 'cost_centers', 'department_id')

        assert 'Cannot delete department with active cost centers' in str(excinfo.value)
        sql, params = db.executed[0]
        assert 'AND status = :p2' in sql
        assert params == {'p1': 1, 'p2': 'active'}
        assert len(db.executed) == 1

    def test_marks_row_inactive(self):
        db = FakeSession([[{'count': 0}], [{'id': 3, 'status': 'inactive'}]])

        rows = handle_soft_delete(db, 'cost_centers', 3, 'reimbursements', 'cost_center_id')

        assert rows == [{'id': 3, 'status': 'inactive'}]
        check_sql, _ = db.executed[0]
        assert 'status' not in check_sql
        update_sql, params = db.executed[1]
        assert update_sql.startswith('UPDATE cost_centers SET status = :p1')
        assert params == {'p1': 'inactive', 'p2': 3}

    def test_without_dependency_check(self):
        db = FakeSession([[]])
        assert handle_soft_delete(db, 'projects', 4) == []
        assert len(db.executed) == 1


def test_created_row_is_found_by_its_own_name_and_status():
    created_row = {'id': 14, 'name': 'Field Ops', 'code': 'FOPS', 'status': 'active'}
    db = FakeSession([[created_row]])

    [created] = handle_create(db, 'departments', ['name', 'code', 'status'], ['Field Ops', 'FOPS', 'active'])
    db.queue([created])
    rows = handle_get_with_filters(
        db, 'departments', table_alias='d', additional_filters={'status': created['status'], 'search': created['name']}
    )

    assert [row['id'] for row in rows] == [created['id']]
    (insert_sql, insert_params), (select_sql, select_params) = db.executed
    assert insert_sql.endswith('RETURNING *')
    assert insert_params == {'p1': 'Field Ops', 'p2': 'FOPS', 'p3': 'active'}
    assert 'WHERE 1=1 AND d.status = :p1 AND (d.name ILIKE :p2' in select_sql
    assert select_params == {'p1': 'active', 'p2': '%Field Ops%'}
