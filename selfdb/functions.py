"""Cloud function management and invocation."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from .auth import AuthClient

FUNCTIONS_PATH = "/api/v1/functions"

TriggerType = Literal["http", "schedule", "event"]


class FunctionsClient:
    """CRUD, deploy, logs and invocation of backend cloud functions."""

    def __init__(self, auth: AuthClient) -> None:
        self._auth = auth

    async def list_functions(self) -> list[dict[str, Any]]:
        return await self._auth.make_authenticated_request("GET", FUNCTIONS_PATH)

    async def get_function(self, function_id: int) -> dict[str, Any]:
        return await self._auth.make_authenticated_request(
            "GET", f"{FUNCTIONS_PATH}/{function_id}"
        )

    async def create_function(
        self,
        name: str,
        code: str,
        *,
        trigger_type: TriggerType = "http",
        trigger_config: dict[str, Any] | None = None,
        description: str | None = None,
        environment_variables: dict[str, str] | None = None,
        is_active: bool | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "name": name,
            "code": code,
            "trigger_type": trigger_type,
            "trigger_config": trigger_config or {},
        }
        if description is not None:
            payload["description"] = description
        if environment_variables is not None:
            payload["environment_variables"] = environment_variables
        if is_active is not None:
            payload["is_active"] = is_active
        return await self._auth.make_authenticated_request(
            "POST", FUNCTIONS_PATH, json=payload
        )

    async def update_function(self, function_id: int, **updates: Any) -> dict[str, Any]:
        return await self._auth.make_authenticated_request(
            "PUT", f"{FUNCTIONS_PATH}/{function_id}", json=updates
        )

    async def delete_function(self, function_id: int) -> None:
        await self._auth.make_authenticated_request(
            "DELETE", f"{FUNCTIONS_PATH}/{function_id}"
        )

    async def invoke(
        self,
        function_name: str,
        payload: Any = None,
        *,
        method: str = "POST",
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Invoke a deployed function by name.

        Returns the invocation result: ``success``, ``result``, ``error``,
        ``logs`` and ``duration``.
        """
        return await self._auth.make_authenticated_request(
            method,
            f"{FUNCTIONS_PATH}/invoke/{function_name}",
            json=payload,
            headers={"Content-Type": "application/json", **(headers or {})},
            timeout=timeout,
        )

    async def deploy_function(self, function_id: int) -> None:
        await self._auth.make_authenticated_request(
            "POST", f"{FUNCTIONS_PATH}/{function_id}/deploy"
        )

    async def get_function_logs(self, function_id: int, limit: int = 100) -> list[str]:
        return await self._auth.make_authenticated_request(
            "GET", f"{FUNCTIONS_PATH}/{function_id}/logs", params={"limit": limit}
        )
