"""BackendClient — async access to the managed backend (REST tables, RPCs, functions).

Endpoints:
  POST /functions/v1/predict-property        — force a prediction refresh
  POST /functions/v1/intelligence-engine     — current predictions for a property
  GET  /rest/v1/predictions                  — latest prediction timestamp
  GET  /rest/v1/home_assets, /home_events    — scoring inputs
  GET  /rest/v1/habitta_system_events        — persisted risk deltas
  POST /rest/v1/rpc/append_event_metadata    — attach a delta bundle to an event

Usage::

    async with BackendClient() as client:
        data = await client.get_predictions(home_id)
"""
from datetime import datetime
from typing import Any

import httpx
import structlog
from pydantic import TypeAdapter

log = structlog.get_logger()

# Postgres emits variable-width fractional seconds
_TIMESTAMP = TypeAdapter(datetime)


class BackendError(Exception):
    """Non-2xx response from the backend."""

    def __init__(self, status_code: int, message: str, endpoint: str = ""):
        super().__init__(f"{endpoint} returned {status_code}: {message}")
        self.status_code = status_code
        self.message = message
        self.endpoint = endpoint


class BackendClient:
    def __init__(self, settings=None, transport: httpx.AsyncBaseTransport | None = None):
        from config.settings import get_settings
        self.settings = settings or get_settings()
        headers = {"Content-Type": "application/json"}
        if self.settings.backend_anon_key:
            headers["apikey"] = self.settings.backend_anon_key
            headers["Authorization"] = f"Bearer {self.settings.backend_anon_key}"
        self._client = httpx.AsyncClient(
            base_url=self.settings.backend_url.rstrip("/"),
            headers=headers,
            timeout=self.settings.http_timeout_sec,
            transport=transport,
        )

    async def __aenter__(self) -> "BackendClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Transport helpers
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        resp = await self._client.request(method, path, **kwargs)
        if resp.status_code >= 400:
            raise BackendError(resp.status_code, resp.text[:500], endpoint=path)
        if not resp.content:
            return None
        return resp.json()

    async def invoke_function(self, name: str, body: dict[str, Any]) -> Any:
        return await self._request("POST", f"/functions/v1/{name}", json=body)

    async def rpc(self, name: str, params: dict[str, Any]) -> Any:
        return await self._request("POST", f"/rest/v1/rpc/{name}", json=params)

    async def select(self, table: str, params: dict[str, str]) -> list[dict[str, Any]]:
        rows = await self._request("GET", f"/rest/v1/{table}", params=params)
        return rows or []

    # ------------------------------------------------------------------
    # Predictions
    # ------------------------------------------------------------------

    async def trigger_refresh(
        self,
        home_id: str,
        force_refresh: bool = True,
        trigger_source: str = "task_completion",
        task_id: str | None = None,
    ) -> None:
        await self.invoke_function("predict-property", {
            "address_id": home_id,
            "force_refresh": force_refresh,
            "trigger_source": trigger_source,
            "task_id": task_id,
        })

    async def get_latest_prediction_timestamp(self, home_id: str) -> datetime | None:
        rows = await self.select("predictions", {
            "select": "predicted_at",
            "address_id": f"eq.{home_id}",
            "order": "predicted_at.desc",
            "limit": "1",
        })
        if not rows or not rows[0].get("predicted_at"):
            return None
        return _TIMESTAMP.validate_python(rows[0]["predicted_at"])

    async def get_predictions(self, home_id: str) -> dict[str, Any]:
        data = await self.invoke_function("intelligence-engine", {
            "action": "predictions",
            "property_id": home_id,
        })
        return data or {}

    async def append_event_metadata(
        self,
        home_id: str,
        system_type: str,
        new_data: dict[str, Any],
    ) -> None:
        await self.rpc("append_event_metadata", {
            "p_home_id": home_id,
            "p_system_type": system_type,
            "p_new_data": new_data,
        })

    # ------------------------------------------------------------------
    # Home records
    # ------------------------------------------------------------------

    async def get_home_assets(self, home_id: str) -> list[dict[str, Any]]:
        return await self.select("home_assets", {
            "select": "id,kind,serial,metadata,status,updated_at",
            "home_id": f"eq.{home_id}",
            "status": "eq.active",
        })

    async def get_home_events(self, home_id: str, limit: int = 100) -> list[dict[str, Any]]:
        return await self.select("home_events", {
            "select": (
                "id,event_type,title,description,source,status,severity,"
                "metadata,asset_id,home_id,created_at"
            ),
            "home_id": f"eq.{home_id}",
            "order": "created_at.desc",
            "limit": str(limit),
        })

    async def get_system_events(
        self,
        home_id: str,
        system_type: str | None = None,
        limit: int = 20,
        since: datetime | None = None,
        event_type: str = "maintenance_completed",
    ) -> list[dict[str, Any]]:
        params = {
            "select": "id,system_type,metadata,created_at,home_id",
            "home_id": f"eq.{home_id}",
            "event_type": f"eq.{event_type}",
            "metadata->risk_delta": "not.is.null",
            "order": "created_at.desc",
            "limit": str(limit),
        }
        if system_type:
            params["system_type"] = f"eq.{system_type}"
        if since:
            params["created_at"] = f"gte.{since.isoformat()}"
        return await self.select("habitta_system_events", params)
