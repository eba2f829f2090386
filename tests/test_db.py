"""Tests for the table query builder and database facade."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from selfdb.auth import AuthClient
from selfdb.db import (
    DatabaseClient,
    Equals,
    OrderBy,
    PaginatedResponse,
    QueryBuilder,
    SqlQueryResponse,
)
from selfdb.errors import SelfDBValidationError


@pytest.fixture
def auth() -> MagicMock:
    double = MagicMock(spec=AuthClient)
    double.make_authenticated_request = AsyncMock()
    return double


@pytest.fixture
def db(auth: MagicMock) -> DatabaseClient:
    return DatabaseClient(auth)


class TestQueryBuilder:
    def test_build_params(self, auth: MagicMock) -> None:
        query = (
            QueryBuilder(auth, "posts")
            .select(["id", "title"])
            .where("author_id", 7)
            .order("created_at", "desc")
            .limit(20)
            .offset(40)
        )
        assert query.build_params() == {
            "page_size": 20,
            "page": 3,
            "order_by": "created_at:desc",
            "filter_column": "author_id",
            "filter_value": 7,
        }

    def test_offset_without_limit_uses_default_page_size(self, auth: MagicMock) -> None:
        assert QueryBuilder(auth, "posts").offset(100).build_params() == {"page": 3}

    def test_multiple_conditions_rejected(self, auth: MagicMock) -> None:
        query = QueryBuilder(auth, "posts").where("a", 1).filter(Equals("b", 2))
        with pytest.raises(SelfDBValidationError) as exc_info:
            query.build_params()
        assert exc_info.value.code == "MULTIPLE_CONDITIONS_UNSUPPORTED"

    async def test_execute(self, auth: MagicMock) -> None:
        auth.make_authenticated_request.return_value = {
            "data": [{"id": 1}],
            "metadata": {"total_count": 1},
        }

        rows = await QueryBuilder(auth, "posts").where("id", 1).execute()

        assert rows == [{"id": 1}]
        auth.make_authenticated_request.assert_awaited_once_with(
            "GET",
            "/api/v1/tables/posts/data",
            params={"filter_column": "id", "filter_value": 1},
        )

    async def test_single(self, auth: MagicMock) -> None:
        auth.make_authenticated_request.return_value = {"data": []}
        assert await QueryBuilder(auth, "posts").single() is None
        params = auth.make_authenticated_request.await_args.kwargs["params"]
        assert params == {"page_size": 1}

    async def test_insert(self, auth: MagicMock) -> None:
        auth.make_authenticated_request.return_value = {"id": 5, "title": "hi"}
        assert await QueryBuilder(auth, "posts").insert({"title": "hi"}) == {
            "id": 5,
            "title": "hi",
        }
        auth.make_authenticated_request.assert_awaited_once_with(
            "POST", "/api/v1/tables/posts/data", json={"title": "hi"}
        )

    async def test_update_by_id(self, auth: MagicMock) -> None:
        await QueryBuilder(auth, "posts").where("id", 5).update({"title": "new"})
        auth.make_authenticated_request.assert_awaited_once_with(
            "PUT",
            "/api/v1/tables/posts/data/5",
            params={"id_column": "id"},
            json={"title": "new"},
        )

    async def test_delete_by_id(self, auth: MagicMock) -> None:
        assert await QueryBuilder(auth, "posts").where("id", "abc").delete() is True
        auth.make_authenticated_request.assert_awaited_once_with(
            "DELETE", "/api/v1/tables/posts/data/abc", params={"id_column": "id"}
        )

    @pytest.mark.parametrize("operation", ["update", "delete"])
    async def test_write_without_where_rejected(
        self, auth: MagicMock, operation: str
    ) -> None:
        query = QueryBuilder(auth, "posts")
        with pytest.raises(SelfDBValidationError) as exc_info:
            if operation == "update":
                await query.update({"title": "x"})
            else:
                await query.delete()
        assert exc_info.value.code == f"{operation.upper()}_NO_WHERE"
        auth.make_authenticated_request.assert_not_called()

    @pytest.mark.parametrize("operation", ["update", "delete"])
    async def test_write_by_other_column_rejected(
        self, auth: MagicMock, operation: str
    ) -> None:
        query = QueryBuilder(auth, "posts").where("title", "x")
        with pytest.raises(SelfDBValidationError) as exc_info:
            if operation == "update":
                await query.update({"title": "y"})
            else:
                await query.delete()
        assert exc_info.value.code == f"{operation.upper()}_UNSUPPORTED_WHERE"
        auth.make_authenticated_request.assert_not_called()


class TestDatabaseClient:
    async def test_table_management(self, db: DatabaseClient, auth: MagicMock) -> None:
        await db.get_tables()
        await db.get_table_structure("posts")
        await db.create_table("posts", [{"name": "id", "type": "uuid"}])
        await db.drop_table("posts")

        calls = [call.args for call in auth.make_authenticated_request.await_args_list]
        assert calls == [
            ("GET", "/api/v1/tables"),
            ("GET", "/api/v1/tables/posts/structure"),
            ("POST", "/api/v1/tables"),
            ("DELETE", "/api/v1/tables/posts"),
        ]

    @pytest.mark.parametrize(
        ("order_by", "expected"),
        [
            ("created_at", "created_at:asc"),
            ("created_at desc", "created_at:desc"),
            ("created_at:DESC", "created_at:desc"),
            (OrderBy("title", "desc"), "title:desc"),
        ],
    )
    async def test_read_order_forms(
        self, db: DatabaseClient, auth: MagicMock, order_by, expected: str
    ) -> None:
        auth.make_authenticated_request.return_value = {"data": []}
        await db.read("posts", order_by=order_by, limit=5)
        params = auth.make_authenticated_request.await_args.kwargs["params"]
        assert params == {"page_size": 5, "order_by": expected}

    async def test_read_invalid_direction(self, db: DatabaseClient) -> None:
        with pytest.raises(SelfDBValidationError):
            await db.read("posts", order_by="title sideways")

    async def test_find_by_id(self, db: DatabaseClient, auth: MagicMock) -> None:
        auth.make_authenticated_request.return_value = {"data": [{"id": 9}]}
        assert await db.find_by_id("posts", 9) == {"id": 9}

    async def test_update_and_delete_require_id(self, db: DatabaseClient) -> None:
        with pytest.raises(SelfDBValidationError):
            await db.update("posts", {"title": "x"}, {})
        with pytest.raises(SelfDBValidationError):
            await db.delete("posts", {"author_id": 3})

    async def test_paginate(self, db: DatabaseClient, auth: MagicMock) -> None:
        auth.make_authenticated_request.return_value = {
            "data": [{"id": 11}],
            "metadata": {"total_count": 21, "page": 2, "page_size": 10, "total_pages": 3},
        }

        page = await db.paginate("posts", 2, 10, where={"author_id": 1})

        assert page == PaginatedResponse(
            data=[{"id": 11}], total=21, page=2, limit=10, has_next=True, has_prev=True
        )
        assert auth.make_authenticated_request.await_args.kwargs["params"] == {
            "page": 2,
            "page_size": 10,
            "filter_column": "author_id",
            "filter_value": 1,
        }

    async def test_execute_sql_sends_query_verbatim(
        self, db: DatabaseClient, auth: MagicMock
    ) -> None:
        auth.make_authenticated_request.return_value = {
            "columns": ["count"],
            "rows": [[3]],
            "rowCount": 1,
            "duration": 1.5,
        }

        result = await db.execute_sql("SELECT count(*) FROM posts")

        assert result == SqlQueryResponse(["count"], [[3]], 1, 1.5)
        auth.make_authenticated_request.assert_awaited_once_with(
            "POST", "/api/v1/sql/query", json={"query": "SELECT count(*) FROM posts"}
        )

    async def test_update_table_data(self, db: DatabaseClient, auth: MagicMock) -> None:
        await db.update_table_data("posts", 4, {"title": "t"}, id_column="post_id")
        auth.make_authenticated_request.assert_awaited_once_with(
            "PUT",
            "/api/v1/tables/posts/data/4",
            params={"id_column": "post_id"},
            json={"title": "t"},
        )
