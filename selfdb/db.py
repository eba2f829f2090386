"""Table data access for SelfDB.

``QueryBuilder`` turns a fluent chain into requests against the table data
endpoints. The backend filters on a single column only, so a query holds at
most one condition, and updates and deletes must target a row by ``id``.
Raw SQL goes through ``DatabaseClient.execute_sql`` untouched; this module
never builds SQL text from caller values.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

from .errors import SelfDBValidationError

if TYPE_CHECKING:
    from .auth import AuthClient

TABLES_PATH = "/api/v1/tables"
SQL_PATH = "/api/v1/sql/query"

DEFAULT_PAGE_SIZE = 50

Direction = Literal["asc", "desc"]


@dataclass(frozen=True, slots=True)
class Equals:
    """``column = value`` condition."""

    column: str
    value: Any


# Extend with further condition classes (e.g. In, Range) as the backend grows.
Filter = Equals


@dataclass(frozen=True, slots=True)
class OrderBy:
    column: str
    direction: Direction = "asc"

    def to_param(self) -> str:
        return f"{self.column}:{self.direction.lower()}"


@dataclass(slots=True)
class PaginatedResponse:
    data: list[dict[str, Any]]
    total: int
    page: int
    limit: int
    has_next: bool
    has_prev: bool


@dataclass(slots=True)
class SqlQueryResponse:
    columns: list[str]
    rows: list[list[Any]]
    row_count: int
    duration: float | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SqlQueryResponse:
        return cls(
            columns=list(data.get("columns") or []),
            rows=[list(row) for row in data.get("rows") or []],
            row_count=int(data.get("row_count", data.get("rowCount", 0)) or 0),
            duration=data.get("duration"),
        )


def _table_path(table: str, row_id: Any = None) -> str:
    path = f"{TABLES_PATH}/{table}/data"
    if row_id is not None:
        path = f"{path}/{row_id}"
    return path


def _filter_params(conditions: list[Filter]) -> dict[str, Any]:
    """Translate conditions into the backend's single-column filter params."""
    if not conditions:
        return {}
    if len(conditions) > 1:
        raise SelfDBValidationError(
            "Only one filter condition is supported per query",
            code="MULTIPLE_CONDITIONS_UNSUPPORTED",
            suggestion="Filter on a single column",
        )
    condition = conditions[0]
    if isinstance(condition, Equals):
        return {"filter_column": condition.column, "filter_value": condition.value}
    raise SelfDBValidationError(
        f"Unsupported filter condition: {condition!r}",
        code="UNSUPPORTED_CONDITION",
    )


def _page_params(limit: int | None, offset: int | None) -> dict[str, Any]:
    params: dict[str, Any] = {}
    if limit:
        params["page_size"] = limit
    if offset:
        params["page"] = offset // (limit or DEFAULT_PAGE_SIZE) + 1
    return params


def _id_condition(conditions: list[Filter], operation: str) -> Any:
    """Return the row id targeted by ``conditions`` or raise."""
    if not conditions:
        raise SelfDBValidationError(
            f"{operation.capitalize()} requires where conditions for safety",
            code=f"{operation.upper()}_NO_WHERE",
            suggestion=f"Add where conditions to avoid changing every row on {operation}",
        )
    for condition in conditions:
        if isinstance(condition, Equals) and condition.column == "id":
            if condition.value is None or condition.value == "":
                break
            return condition.value
    raise SelfDBValidationError(
        f"{operation.capitalize()} currently only supports id-based where conditions",
        code=f"{operation.upper()}_UNSUPPORTED_WHERE",
        suggestion=f'Use .where("id", value) for {operation}s',
    )


class QueryBuilder:
    """Fluent query over one table.

    Example:
        rows = await db.from_("posts").where("author_id", 7).order(
            "created_at", "desc"
        ).limit(10).execute()
    """

    def __init__(self, auth: AuthClient, table: str) -> None:
        self._auth = auth
        self.table = table
        self._columns: list[str] = ["*"]
        self._conditions: list[Filter] = []
        self._order: OrderBy | None = None
        self._limit: int | None = None
        self._offset: int | None = None

    def select(self, columns: str | list[str]) -> QueryBuilder:
        self._columns = [columns] if isinstance(columns, str) else list(columns)
        return self

    def where(self, column: str, value: Any) -> QueryBuilder:
        """Add an equality condition."""
        return self.filter(Equals(column, value))

    def filter(self, condition: Filter) -> QueryBuilder:
        self._conditions.append(condition)
        return self

    def order(self, column: str, direction: Direction = "asc") -> QueryBuilder:
        self._order = OrderBy(column, direction)
        return self

    def limit(self, count: int) -> QueryBuilder:
        self._limit = count
        return self

    def offset(self, count: int) -> QueryBuilder:
        self._offset = count
        return self

    def build_params(self) -> dict[str, Any]:
        """Query string for ``execute``."""
        params = _page_params(self._limit, self._offset)
        if self._order is not None:
            params["order_by"] = self._order.to_param()
        params.update(_filter_params(self._conditions))
        return params

    async def execute(self) -> list[dict[str, Any]]:
        response = await self._auth.make_authenticated_request(
            "GET", _table_path(self.table), params=self.build_params()
        )
        return list(response.get("data", [])) if response else []

    async def single(self) -> dict[str, Any] | None:
        results = await self.limit(1).execute()
        return results[0] if results else None

    async def insert(self, data: dict[str, Any]) -> Any:
        return await self._auth.make_authenticated_request(
            "POST", _table_path(self.table), json=data
        )

    async def update(self, data: dict[str, Any]) -> Any:
        row_id = _id_condition(self._conditions, "update")
        return await self._auth.make_authenticated_request(
            "PUT",
            _table_path(self.table, row_id),
            params={"id_column": "id"},
            json=data,
        )

    async def delete(self) -> bool:
        row_id = _id_condition(self._conditions, "delete")
        await self._auth.make_authenticated_request(
            "DELETE", _table_path(self.table, row_id), params={"id_column": "id"}
        )
        return True


class DatabaseClient:
    """Table management and row access."""

    def __init__(self, auth: AuthClient) -> None:
        self._auth = auth

    def from_(self, table: str) -> QueryBuilder:
        return QueryBuilder(self._auth, table)

    async def get_tables(self) -> list[dict[str, Any]]:
        return await self._auth.make_authenticated_request("GET", TABLES_PATH)

    async def get_table_structure(self, table: str) -> list[dict[str, Any]]:
        return await self._auth.make_authenticated_request(
            "GET", f"{TABLES_PATH}/{table}/structure"
        )

    async def create_table(self, name: str, columns: list[dict[str, Any]]) -> None:
        await self._auth.make_authenticated_request(
            "POST", TABLES_PATH, json={"name": name, "columns": columns}
        )

    async def drop_table(self, table: str) -> None:
        await self._auth.make_authenticated_request("DELETE", f"{TABLES_PATH}/{table}")

    async def create(self, table: str, data: dict[str, Any]) -> Any:
        return await self.from_(table).insert(data)

    async def read(
        self,
        table: str,
        *,
        where: dict[str, Any] | None = None,
        order_by: str | OrderBy | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict[str, Any]]:
        """Read rows; ``where`` maps one column to the value it must equal."""
        query = self.from_(table)
        for column, value in (where or {}).items():
            query.where(column, value)
        if order_by is not None:
            order = _parse_order(order_by)
            query.order(order.column, order.direction)
        if limit is not None:
            query.limit(limit)
        if offset is not None:
            query.offset(offset)
        return await query.execute()

    async def update(
        self, table: str, data: dict[str, Any], where: dict[str, Any]
    ) -> Any:
        query = self.from_(table)
        for column, value in where.items():
            query.where(column, value)
        return await query.update(data)

    async def delete(self, table: str, where: dict[str, Any]) -> bool:
        query = self.from_(table)
        for column, value in where.items():
            query.where(column, value)
        return await query.delete()

    async def find_by_id(self, table: str, row_id: Any) -> dict[str, Any] | None:
        results = await self.read(table, where={"id": row_id})
        return results[0] if results else None

    async def paginate(
        self,
        table: str,
        page: int = 1,
        limit: int = 10,
        *,
        where: dict[str, Any] | None = None,
        order_by: str | OrderBy | None = None,
    ) -> PaginatedResponse:
        conditions = [Equals(column, value) for column, value in (where or {}).items()]
        params: dict[str, Any] = {"page": page, "page_size": limit}
        if order_by is not None:
            params["order_by"] = _parse_order(order_by).to_param()
        params.update(_filter_params(conditions))

        response = await self._auth.make_authenticated_request(
            "GET", _table_path(table), params=params
        )
        metadata = response.get("metadata", {})
        current = int(metadata.get("page", page))
        return PaginatedResponse(
            data=list(response.get("data", [])),
            total=int(metadata.get("total_count", 0)),
            page=current,
            limit=int(metadata.get("page_size", limit)),
            has_next=current < int(metadata.get("total_pages", 0)),
            has_prev=current > 1,
        )

    async def execute_sql(self, query: str) -> SqlQueryResponse:
        """Run raw SQL on the backend and return columns and row values."""
        response = await self._auth.make_authenticated_request(
            "POST", SQL_PATH, json={"query": query}
        )
        return SqlQueryResponse.from_dict(response or {})

    async def get_table_data(
        self,
        table: str,
        *,
        page: int | None = None,
        page_size: int | None = None,
        order_by: str | None = None,
        filter_column: str | None = None,
        filter_value: Any = None,
    ) -> dict[str, Any]:
        """Raw table data response including ``metadata``."""
        params = {
            "page": page,
            "page_size": page_size,
            "order_by": order_by,
            "filter_column": filter_column,
            "filter_value": filter_value,
        }
        return await self._auth.make_authenticated_request(
            "GET", _table_path(table), params=params
        )

    async def insert_table_data(self, table: str, data: dict[str, Any]) -> Any:
        return await self.from_(table).insert(data)

    async def update_table_data(
        self, table: str, row_id: Any, data: dict[str, Any], id_column: str = "id"
    ) -> Any:
        return await self._auth.make_authenticated_request(
            "PUT",
            _table_path(table, row_id),
            params={"id_column": id_column},
            json=data,
        )


def _parse_order(order_by: str | OrderBy) -> OrderBy:
    """Accept ``OrderBy`` or ``"column"`` / ``"column desc"`` / ``"column:desc"``."""
    if isinstance(order_by, OrderBy):
        return order_by
    column, _, direction = order_by.replace(":", " ").partition(" ")
    direction = direction.strip().lower() or "asc"
    if direction not in ("asc", "desc"):
        raise SelfDBValidationError(f"Invalid order direction: {direction!r}")
    return OrderBy(column.strip(), direction)  # type: ignore[arg-type]
