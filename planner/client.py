from datetime import date
from typing import Any, Dict, List, Optional

import httpx

from .constants import PLANNER_API_URL
from .errors import AssignmentError, FormatError, ScheduleImportError
from .models import (
    DaySchedule,
    ImportResponse,
    NewItemsPreview,
    ParsedSchedule,
    UnassignedWorker,
    WorkerAssignmentRequest,
    WorkerAssignmentResult,
)


def _error_detail(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {"detail": response.text or response.reason_phrase}
    return body if isinstance(body, dict) else {"detail": str(body)}


class PlannerClient:
    """Async client for the schedule planner API.

    ``update_worker_assignment`` is shaped to serve directly as the commit
    function of an ``AssignmentCoordinator``.
    """

    def __init__(
        self,
        base_url: str = PLANNER_API_URL,
        token: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url, timeout=timeout, headers=headers, transport=transport
        )

    async def __aenter__(self) -> "PlannerClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def parse(self, text: str, work_date: Optional[date] = None) -> ParsedSchedule:
        payload: Dict[str, Any] = {"text": text}
        if work_date is not None:
            payload["workDate"] = work_date.isoformat()
        response = await self._client.post("/v1/schedule/parse", json=payload)
        if response.status_code == 400:
            body = _error_detail(response)
            raise FormatError(
                body.get("message") or body.get("detail", "Invalid roster."),
                body.get("lineNumber"),
                body.get("line"),
            )
        response.raise_for_status()
        return ParsedSchedule.model_validate(response.json())

    async def preview(self, parsed: ParsedSchedule) -> NewItemsPreview:
        response = await self._client.post(
            "/v1/schedule/preview", json=parsed.model_dump(mode="json")
        )
        response.raise_for_status()
        return NewItemsPreview.model_validate(response.json())

    async def import_schedule(self, parsed: ParsedSchedule) -> ImportResponse:
        try:
            response = await self._client.post(
                "/v1/schedule/import", json=parsed.model_dump(mode="json")
            )
        except httpx.HTTPError as exc:
            raise ScheduleImportError(f"Import request failed: {exc}") from exc
        if response.is_error:
            raise ScheduleImportError(_error_detail(response).get("detail", "Import failed."))
        return ImportResponse.model_validate(response.json())

    async def get_schedule(self, work_date: date) -> Optional[DaySchedule]:
        response = await self._client.get(f"/v1/schedule/{work_date.isoformat()}")
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return DaySchedule.model_validate(response.json())

    async def unassigned_workers(self, work_date: date) -> List[UnassignedWorker]:
        response = await self._client.get(f"/v1/schedule/{work_date.isoformat()}/unassigned")
        response.raise_for_status()
        return [UnassignedWorker.model_validate(row) for row in response.json()]

    async def update_worker_assignment(
        self, request: WorkerAssignmentRequest
    ) -> WorkerAssignmentResult:
        try:
            response = await self._client.post(
                "/v1/schedule/assignments", json=request.model_dump(mode="json")
            )
        except httpx.HTTPError as exc:
            raise AssignmentError(
                f"Assignment request failed: {exc}", request.scheduleItemId, request.userId
            ) from exc
        if response.is_error:
            raise AssignmentError(
                _error_detail(response).get("detail", "Assignment failed."),
                request.scheduleItemId,
                request.userId,
            )
        try:
            return WorkerAssignmentResult.model_validate(response.json())
        except ValueError as exc:
            raise AssignmentError(
                f"Unreadable assignment response: {exc}", request.scheduleItemId, request.userId
            ) from exc
