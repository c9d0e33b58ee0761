"""
Parameterized SQL builders for the master-data tables.

Every helper takes an open SQLAlchemy session, renders a ``text()`` statement
with numbered named binds (``:p1``, ``:p2``...) and returns plain row dicts.
Database errors are not caught here; callers decide how to report them.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import text

from .filters import FilterSpec, param_name

logger = logging.getLogger(__name__)

SELECT_ALIAS_PATTERN = re.compile(r'^([a-z]+)\.')
JOIN_ALIAS_PATTERN = re.compile(r'ON\s+([a-z]+)\.')
IDENTIFIER_PATTERN = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')

ENTITY_LABELS = {
    'departments': 'department',
    'cost_centers': 'cost center',
    'projects': 'project',
}
RELATED_LABELS = {
    'cost_centers': 'cost centers',
    'reimbursements': 'reimbursements',
}


class DependencyExistsError(Exception):
    """Raised when a soft delete is blocked by dependent rows."""

    def __init__(self, entity: str, related: str):
        self.entity = entity
        self.related = related
        super().__init__(f"Cannot delete {entity} with active {related}. Please deactivate instead.")


def _check_identifier(name: str) -> str:
    if not IDENTIFIER_PATTERN.match(name):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return name


def _rows(result) -> List[Dict[str, Any]]:
    return [dict(row) for row in result.mappings().all()]


def validate_name_and_code(name, code, additional_fields: Optional[Mapping[str, Any]] = None) -> List[str]:
    errors = []
    if not name:
        errors.append('Name is required')
    if not code:
        errors.append('Code is required')

    for field_name, value in (additional_fields or {}).items():
        if value is None or value == '':
            errors.append(f'{field_name} is required')

    return errors


@dataclass
class SelectSpec:
    """Table, alias and clauses for a filtered master-data SELECT."""

    table_name: str
    select_fields: str = '*'
    join_clause: str = ''
    group_by: str = ''
    order_by: str = ''
    table_alias: Optional[str] = None
    status_field: str = 'status'
    search_fields: Sequence[str] = ('name', 'code')

    def resolve_alias(self) -> Optional[str]:
        if self.table_alias:
            return self.table_alias
        match = SELECT_ALIAS_PATTERN.match(self.select_fields)
        if match:
            return match.group(1)
        if ' ON ' in self.join_clause:
            match = JOIN_ALIAS_PATTERN.search(self.join_clause)
            if match:
                return match.group(1)
        return None

    def build(self, filters: FilterSpec) -> Tuple[str, Dict[str, Any]]:
        alias = self.resolve_alias()
        from_clause = f"{self.table_name} {alias}" if alias else self.table_name

        parts = [f"SELECT {self.select_fields} FROM {from_clause}"]
        if self.join_clause:
            parts.append(self.join_clause)
        where, params = filters.to_sql(alias=alias)
        parts.append(f"WHERE 1=1{where}")
        if self.group_by:
            parts.append(self.group_by)
        if self.order_by:
            parts.append(self.order_by)

        return ' '.join(parts), params


def build_select_query(
    table_name: str,
    status_field: str = 'status',
    search_fields: Sequence[str] = ('name', 'code'),
    join_clause: str = '',
    group_by: str = '',
    order_by: str = '',
    additional_filters: Optional[Mapping[str, Any]] = None,
    select_fields: str = '*',
    table_alias: Optional[str] = None,
) -> Tuple[str, Dict[str, Any]]:
    additional_filters = dict(additional_filters or {})
    spec = SelectSpec(
        table_name=table_name,
        select_fields=select_fields,
        join_clause=join_clause,
        group_by=group_by,
        order_by=order_by,
        table_alias=table_alias,
        status_field=status_field,
        search_fields=search_fields,
    )
    filters = FilterSpec(
        search=additional_filters.pop('search', None),
        search_fields=search_fields,
        status=additional_filters.pop('status', None),
        status_field=status_field,
        equals=additional_filters,
    )
    return spec.build(filters)


def handle_get_with_filters(db, table_name: str, **options) -> List[Dict[str, Any]]:
    query, params = build_select_query(table_name, **options)
    return _rows(db.execute(text(query), params))


def build_insert_query(table_name: str, fields: Sequence[str], values: Sequence[Any], returning: str = '*'):
    _check_identifier(table_name)
    field_names = ', '.join(_check_identifier(name) for name in fields)
    placeholders = ', '.join(f":{param_name(i + 1)}" for i in range(len(fields)))
    params = {param_name(i + 1): value for i, value in enumerate(values)}

    query = f"INSERT INTO {table_name} ({field_names}) VALUES ({placeholders}) RETURNING {returning}"
    return query, params


def handle_create(db, table_name: str, fields: Sequence[str], values: Sequence[Any], returning: str = '*'):
    query, params = build_insert_query(table_name, fields, values, returning)
    return _rows(db.execute(text(query), params))


def build_update_query(table_name: str, id, fields: Sequence[str], values: Sequence[Any], returning: str = '*'):
    _check_identifier(table_name)
    updates = ', '.join(
        f"{_check_identifier(name)} = :{param_name(i + 1)}" for i, name in enumerate(fields)
    )
    id_param = param_name(len(fields) + 1)
    params = {param_name(i + 1): value for i, value in enumerate(values)}
    params[id_param] = id

    query = (
        f"UPDATE {table_name} SET {updates}, updated_at = CURRENT_TIMESTAMP "
        f"WHERE id = :{id_param} RETURNING {returning}"
    )
    return query, params


def handle_update(db, table_name: str, id, fields: Sequence[str], values: Sequence[Any], returning: str = '*'):
    query, params = build_update_query(table_name, id, fields, values, returning)
    return _rows(db.execute(text(query), params))


def check_can_delete(db, table_name: str, id, check_table: str, check_field: str) -> None:
    _check_identifier(check_table)
    _check_identifier(check_field)

    # Only active cost centers keep a department alive.
    is_department_check = check_table == 'cost_centers' and check_field == 'department_id'
    if is_department_check:
        query = f"SELECT COUNT(*) AS count FROM {check_table} WHERE {check_field} = :p1 AND status = :p2"
        params = {'p1': id, 'p2': 'active'}
    else:
        query = f"SELECT COUNT(*) AS count FROM {check_table} WHERE {check_field} = :p1"
        params = {'p1': id}

    count = int(db.execute(text(query), params).scalar() or 0)
    if count > 0:
        entity = ENTITY_LABELS.get(table_name, table_name.replace('_', ' '))
        related = RELATED_LABELS.get(check_table, check_table.replace('_', ' '))
        logger.info("Blocked delete of %s %s: %d dependent %s", entity, id, count, related)
        raise DependencyExistsError(entity, related)


def handle_soft_delete(db, table_name: str, id, check_table: Optional[str] = None, check_field: Optional[str] = None):
    _check_identifier(table_name)
    if check_table and check_field:
        check_can_delete(db, table_name, id, check_table, check_field)

    query = (
        f"UPDATE {table_name} SET status = :p1, updated_at = CURRENT_TIMESTAMP "
        f"WHERE id = :p2 RETURNING *"
    )
    return _rows(db.execute(text(query), {'p1': 'inactive', 'p2': id}))
