"""Table-agnostic helpers shared by the routers."""

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from fastapi.responses import JSONResponse
from starlette import status

from .filters import end_of_day, param_name

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = '23505'
FOREIGN_KEY_VIOLATION = '23503'
MAX_PAGE_SIZE = 100


def build_where_clause(conditions: Mapping[str, Any], param_offset: int = 0) -> Tuple[str, Dict[str, Any]]:
    """Equality conditions joined with AND; empty values are skipped."""
    where_parts = []
    params = {}
    index = param_offset

    for field_name, value in conditions.items():
        if value is None or value == '':
            continue
        index += 1
        where_parts.append(f"{field_name} = :{param_name(index)}")
        params[param_name(index)] = value

    where_clause = f"WHERE {' AND '.join(where_parts)}" if where_parts else ''
    return where_clause, params


def build_date_filter(start_date=None, end_date=None, date_field: str = 'created_at',
                      param_offset: int = 0) -> Tuple[str, Dict[str, Any]]:
    date_filter = ''
    params = {}
    index = param_offset

    if start_date:
        index += 1
        date_filter += f" AND {date_field} >= :{param_name(index)}"
        params[param_name(index)] = str(start_date)
    if end_date:
        index += 1
        date_filter += f" AND {date_field} <= :{param_name(index)}"
        params[param_name(index)] = end_of_day(end_date).isoformat()

    return date_filter, params


def parse_search_param(search_raw) -> Optional[str]:
    if isinstance(search_raw, str):
        return search_raw
    return None


def _to_int(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def build_pagination(query: Mapping[str, Any], default_limit: int = 50) -> Dict[str, int]:
    limit = max(min(_to_int(query.get('limit')) or default_limit, MAX_PAGE_SIZE), 1)
    page = max(_to_int(query.get('page')) or 1, 1)
    offset = (page - 1) * limit
    return {'limit': limit, 'offset': offset, 'page': page}


def validate_required_fields(data: Mapping[str, Any], required_fields: Sequence[str]) -> List[str]:
    errors = []
    for field_name in required_fields:
        value = data.get(field_name)
        if not value or (isinstance(value, str) and not value.strip()):
            errors.append(f'{field_name} is required')
    return errors


def error_code(error: BaseException) -> Optional[str]:
    """SQLSTATE of a DBAPI error, unwrapping SQLAlchemy's wrapper if present."""
    original = getattr(error, 'orig', None) or error
    return getattr(original, 'pgcode', None) or getattr(original, 'sqlstate', None)


def error_response(status_code: int, message: str, error: Optional[str] = None) -> JSONResponse:
    content = {'success': False, 'message': message}
    if error is not None:
        content['error'] = error
    return JSONResponse(status_code=status_code, content=content)


def handle_database_error(error: BaseException, entity_name: str, action: str) -> JSONResponse:
    code = error_code(error)
    if code == UNIQUE_VIOLATION:
        return error_response(status.HTTP_400_BAD_REQUEST, f'{entity_name} code already exists')
    if code == FOREIGN_KEY_VIOLATION:
        return error_response(status.HTTP_400_BAD_REQUEST, f'Invalid reference for {entity_name}')

    logger.error("Error %s %s: %s", action, entity_name, error, exc_info=error)
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        f'Failed to {action} {entity_name}',
        str(error),
    )
