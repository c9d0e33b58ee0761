"""
Filter definitions shared by the SQL query builder and in-memory filtering.

A single ``FilterSpec`` describes search, status and date-range predicates.
``FilterSpec.to_sql`` renders it as a parameterized WHERE fragment, and
``FilterSpec.apply`` runs the same predicates over rows that were already
fetched, so both sides agree on:

- search is a case-insensitive substring match (``%`` and ``_`` in the term
  are literal); a blank term disables it
- status ``'all'`` (or an empty value) disables status filtering, and an
  explicit list of selected statuses takes precedence over the single value
- the end of a date range includes the whole day (23:59:59.999)
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

DEFAULT_SEARCH_FIELDS = ('name', 'code', 'description', 'status')
END_OF_DAY = time(23, 59, 59, 999000)
LIKE_ESCAPE = "\\"


def param_name(index: int) -> str:
    return f"p{index}"


class ParamBinder:
    """Hands out ``:p1``, ``:p2``... placeholders and collects their values."""

    def __init__(self, offset: int = 0):
        self.index = offset
        self.params: Dict[str, Any] = {}

    def __call__(self, value: Any) -> str:
        self.index += 1
        name = param_name(self.index)
        self.params[name] = value
        return f":{name}"

    def many(self, values: Iterable[Any]) -> str:
        return ', '.join(self(value) for value in values)


def qualify(field_name: str, alias: Optional[str]) -> str:
    return f"{alias}.{field_name}" if alias else field_name


def to_datetime(value: Any) -> Optional[datetime]:
    """Coerce an ISO string, ``date`` or ``datetime`` into a naive datetime."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        result = value
    elif isinstance(value, date):
        result = datetime.combine(value, time.min)
    else:
        text_value = str(value).strip()
        if text_value.endswith('Z'):
            text_value = text_value[:-1] + '+00:00'
        result = datetime.fromisoformat(text_value)
    if result.tzinfo is not None:
        result = result.astimezone(timezone.utc).replace(tzinfo=None)
    return result


def end_of_day(value: Any) -> Optional[datetime]:
    parsed = to_datetime(value)
    if parsed is None:
        return None
    return datetime.combine(parsed.date(), END_OF_DAY)


def is_blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


def escape_like(term: str) -> str:
    """Make ``%``, ``_`` and the escape character match literally in a LIKE pattern."""
    for char in (LIKE_ESCAPE, "%", "_"):
        term = term.replace(char, LIKE_ESCAPE + char)
    return term


@dataclass
class FilterSpec:
    search: Optional[str] = None
    search_fields: Sequence[str] = DEFAULT_SEARCH_FIELDS
    status: Optional[str] = None
    selected_statuses: Sequence[str] = ()
    date_start: Any = None
    date_end: Any = None
    date_field: str = 'created_at'
    status_field: str = 'status'
    equals: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, filters: Mapping[str, Any]) -> "FilterSpec":
        """Build a FilterSpec from a loose mapping such as a query-string dict."""
        return cls(
            search=filters.get('search'),
            search_fields=filters.get('search_fields') or DEFAULT_SEARCH_FIELDS,
            status=filters.get('status') or filters.get('status_filter'),
            selected_statuses=filters.get('selected_statuses') or (),
            date_start=filters.get('date_start') or filters.get('date_range_start'),
            date_end=filters.get('date_end') or filters.get('date_range_end'),
        )

    @property
    def has_status(self) -> bool:
        return bool(self.status) and self.status != 'all'

    # -- SQL rendering -------------------------------------------------------

    def to_sql(self, alias: Optional[str] = None, param_offset: int = 0) -> Tuple[str, Dict[str, Any]]:
        """Render the predicates as `` AND ...`` fragments with named binds."""
        clauses: List[str] = []
        bind = ParamBinder(param_offset)

        status_column = qualify(self.status_field, alias)
        if self.selected_statuses:
            clauses.append(f"{status_column} IN ({bind.many(self.selected_statuses)})")
        elif self.has_status:
            clauses.append(f"{status_column} = {bind(self.status)}")

        if not is_blank(self.search):
            placeholder = bind(f"%{escape_like(self.search)}%")
            conditions = ' OR '.join(
                f"{qualify(name, alias)} ILIKE {placeholder} ESCAPE '{LIKE_ESCAPE}'"
                for name in self.search_fields
            )
            clauses.append(f"({conditions})")

        for name, value in self.equals.items():
            if value is None:
                continue
            clauses.append(f"{qualify(name, alias)} = {bind(value)}")

        date_column = qualify(self.date_field, alias)
        if self.date_start:
            clauses.append(f"{date_column} >= {bind(str(self.date_start))}")
        if self.date_end:
            clauses.append(f"{date_column} <= {bind(end_of_day(self.date_end).isoformat())}")

        fragment = ''.join(f" AND {clause}" for clause in clauses)
        return fragment, bind.params

    # -- In-memory evaluation -----------------------------------------------

    def apply(self, items: Iterable[Mapping[str, Any]]) -> List[Mapping[str, Any]]:
        filtered = apply_search_filter(list(items), self.search or '', self.search_fields)
        filtered = apply_status_filter(filtered, self.status or 'all', self.selected_statuses)
        filtered = apply_date_range_filter(filtered, self.date_start, self.date_end)
        for name, value in self.equals.items():
            if value is None:
                continue
            filtered = [item for item in filtered if item.get(name) == value]
        return filtered


def apply_search_filter(items, search, search_fields=DEFAULT_SEARCH_FIELDS):
    if is_blank(search):
        return list(items)

    query = search.lower()
    matches = []
    for item in items:
        searchable_text = ' '.join(str(item.get(name) or '') for name in search_fields).lower()
        if query in searchable_text:
            matches.append(item)
    return matches


def apply_status_filter(items, status_filter, selected_statuses=()):
    if selected_statuses:
        return [item for item in items if item.get('status') in selected_statuses]
    if status_filter and status_filter != 'all':
        return [item for item in items if item.get('status') == status_filter]
    return list(items)


def _item_timestamp(item):
    try:
        return to_datetime(item.get('created_at') or item.get('updated_at'))
    except ValueError:
        return None


def apply_date_range_filter(items, date_range_start=None, date_range_end=None):
    filtered = list(items)

    start = to_datetime(date_range_start)
    if start is not None:
        filtered = [
            item for item in filtered
            if _item_timestamp(item) is not None and _item_timestamp(item) >= start
        ]

    end = end_of_day(date_range_end)
    if end is not None:
        filtered = [
            item for item in filtered
            if _item_timestamp(item) is not None and _item_timestamp(item) <= end
        ]

    return filtered


def apply_all_filters(items, filters):
    if not isinstance(filters, FilterSpec):
        filters = FilterSpec.from_mapping(filters)
    return filters.apply(items)
