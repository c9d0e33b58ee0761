"""Generic master-data route handlers driven by an ``EntityConfig``."""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from starlette import status

from ..common_helpers import error_response, handle_database_error, parse_search_param
from ..query_helpers import (
    DependencyExistsError,
    handle_create,
    handle_get_with_filters,
    handle_soft_delete,
    handle_update,
    validate_name_and_code,
)

logger = logging.getLogger(__name__)

Body = Mapping[str, Any]


def no_additional_fields(body: Body) -> Dict[str, Any]:
    return {}


@dataclass
class EntityConfig:
    table_name: str
    entity_name: str
    get_fields: Optional[Callable[[Body], List[str]]] = None
    get_values: Optional[Callable[[Body], List[Any]]] = None
    get_additional_fields: Callable[[Body], Dict[str, Any]] = no_additional_fields
    post_process: Optional[Callable[[Any, Dict[str, Any], Body], Dict[str, Any]]] = None
    select_fields: str = '*'
    join_clause: str = ''
    group_by: str = ''
    order_by: str = ''
    table_alias: Optional[str] = None
    additional_filters: Dict[str, Any] = field(default_factory=dict)
    check_table: Optional[str] = None
    check_field: Optional[str] = None


def _validation_errors(config: EntityConfig, body: Body) -> List[str]:
    return validate_name_and_code(body.get('name'), body.get('code'), config.get_additional_fields(body))


def handle_get_request(db, config: EntityConfig, search=None, status_filter=None):
    try:
        rows = handle_get_with_filters(
            db,
            config.table_name,
            select_fields=config.select_fields,
            join_clause=config.join_clause,
            group_by=config.group_by,
            order_by=config.order_by,
            table_alias=config.table_alias,
            additional_filters={
                **config.additional_filters,
                'status': status_filter,
                'search': parse_search_param(search),
            },
        )
        return {'success': True, 'data': rows}
    except Exception as e:
        logger.error("Error fetching %s: %s", config.entity_name, e, exc_info=e)
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            f'Failed to fetch {config.entity_name}',
            str(e),
        )


def handle_post_request(db, config: EntityConfig, body: Body):
    errors = _validation_errors(config, body)
    if errors:
        return error_response(status.HTTP_400_BAD_REQUEST, ', '.join(errors))

    try:
        rows = handle_create(db, config.table_name, config.get_fields(body), config.get_values(body))
        data = rows[0]
        if config.post_process:
            data = config.post_process(db, data, body)
        db.commit()
    except Exception as e:
        db.rollback()
        return handle_database_error(e, config.entity_name, 'create')

    return {'success': True, 'data': data}


def handle_put_request(db, config: EntityConfig, id, body: Body):
    errors = _validation_errors(config, body)
    if errors:
        return error_response(status.HTTP_400_BAD_REQUEST, ', '.join(errors))

    try:
        rows = handle_update(db, config.table_name, id, config.get_fields(body), config.get_values(body))
        if not rows:
            db.rollback()
            return error_response(status.HTTP_404_NOT_FOUND, f'{config.entity_name} not found')

        data = rows[0]
        if config.post_process:
            data = config.post_process(db, data, body)
        db.commit()
    except Exception as e:
        db.rollback()
        return handle_database_error(e, config.entity_name, 'update')

    return {'success': True, 'data': data}


def handle_delete_request(db, config: EntityConfig, id):
    try:
        rows = handle_soft_delete(db, config.table_name, id, config.check_table, config.check_field)
        if not rows:
            db.rollback()
            return error_response(status.HTTP_404_NOT_FOUND, f'{config.entity_name} not found')
        db.commit()
    except DependencyExistsError as e:
        db.rollback()
        return error_response(status.HTTP_400_BAD_REQUEST, str(e))
    except Exception as e:
        db.rollback()
        if 'Cannot delete' in str(e):
            return error_response(status.HTTP_400_BAD_REQUEST, str(e))
        logger.error("Error deleting %s: %s", config.entity_name, e, exc_info=e)
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            f'Failed to delete {config.entity_name}',
            str(e),
        )

    return {'success': True, 'message': f'{config.entity_name} deactivated successfully'}
