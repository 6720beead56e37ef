from __future__ import annotations

import logging
from typing import Any

import httpx

from outreach_scheduler.core.errors import DispatchError
from outreach_scheduler.jobs.routing import Route

logger = logging.getLogger(__name__)


def workflow_id_for(job_type: str, site_id: str, suffix: str | None = None) -> str:
    parts = [job_type, site_id]
    if suffix:
        parts.append(suffix)
    return "-".join(parts)


class WorkflowClient:
    """Starts workflows on the orchestrator over its HTTP API."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        *,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.headers = {"X-API-Key": api_key} if api_key else {}
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def start_workflow(
        self,
        job_type: str,
        site_id: str,
        route: Route,
        args: dict[str, Any] | None = None,
        *,
        workflow_id: str | None = None,
    ) -> dict[str, Any]:
        payload = {
            "workflow_type": job_type,
            "workflow_id": workflow_id or workflow_id_for(job_type, site_id),
            "task_queue": route.queue,
            "run_timeout_seconds": int(route.default_timeout.total_seconds()),
            "priority": route.lane.value,
            "args": {"site_id": site_id, **(args or {})},
        }
        try:
            response = await self._post("/workflows/execute", payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise DispatchError(
                f"orchestrator rejected {job_type} for site {site_id}: HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise DispatchError(f"orchestrator unreachable for {job_type} site {site_id}: {exc}") from exc

        body = response.json() if response.content else {}
        logger.info(
            "workflow started job_type=%s site_id=%s workflow_id=%s queue=%s",
            job_type,
            site_id,
            payload["workflow_id"],
            route.queue,
        )
        return body if isinstance(body, dict) else {"result": body}

    async def _post(self, path: str, payload: dict[str, Any]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(f"{self.base_url}{path}", json=payload, headers=self.headers)
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            return await client.post(f"{self.base_url}{path}", json=payload, headers=self.headers)
