"""Step lifecycle tracking on top of the state store."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from pydantic import TypeAdapter, ValidationError

from ..errors import ErrorKind, WaymarkError, require_identifier
from ..models import (
    STEP_STATUSES,
    TERMINAL_STATUSES,
    StepFinished,
    StepRecord,
    StepStarted,
    StepStatusChange,
    WorkflowReport,
)
from ..persistence.state_store import StateStore
from ..results import operation
from ..utils import as_utc, duration_ms, utcnow
from .progress import build_report

logger = logging.getLogger(__name__)

_datetime_adapter = TypeAdapter(datetime)


def _supplied_start_time(data: Mapping[str, Any], operation_name: str) -> Optional[datetime]:
    raw = data.get("startTime", data.get("start_time"))
    if raw is None:
        return None
    try:
        parsed = _datetime_adapter.validate_python(raw)
    except ValidationError as exc:
        raise WaymarkError(
            ErrorKind.INVALID_STATE,
            f"Invalid startTime: {raw!r}",
            {"operation": operation_name, "startTime": str(raw)},
        ) from exc
    return as_utc(parsed)


class StepTracker:
    """Enforce the step state machine and keep ``step_history`` consistent.

    ``(absent) -> pending -> in-progress -> completed | failed``; a finished
    step may be started again (retry). Each ``step_id`` has at most one record
    and keeps the position it was first recorded at.

    Every mutation is a read-modify-write of the whole state document, so
    callers must serialize writers of the same workflow themselves.
    """

    def __init__(self, store: StateStore):
        self.store = store

    @operation("startStep")
    async def start_step(
        self,
        workflow_id: str,
        step_id: str,
        data: Optional[Mapping[str, Any]] = None,
    ) -> StepStarted:
        """Mark ``step_id`` in-progress, creating the workflow state if needed."""
        require_identifier("workflow_id", workflow_id, "startStep")
        require_identifier("step_id", step_id, "startStep")

        state = await self.store.load_or_create(workflow_id)
        now = utcnow()
        step = state.find_step(step_id)
        if step is None:
            step = StepRecord(step_id=step_id, data=dict(data or {}))
            state.step_history.append(step)
        else:
            step.data.update(data or {})
        step.status = "in-progress"
        step.start_time = now
        step.end_time = None
        step.duration = None
        step.error = None

        state.touch(now)
        await self.store.commit(workflow_id, state)
        logger.info(f"Started step {step_id} for workflow_id={workflow_id}")
        return StepStarted(step_id=step_id, start_time=now)

    @operation("completeStep")
    async def complete_step(
        self,
        workflow_id: str,
        step_id: str,
        data: Optional[Mapping[str, Any]] = None,
    ) -> StepFinished:
        """Finish ``step_id``; it is marked failed when ``data`` carries an error.

        The workflow state must already exist. A step that was never started
        is recorded directly, using ``data["startTime"]`` when given.
        """
        require_identifier("workflow_id", workflow_id, "completeStep")
        require_identifier("step_id", step_id, "completeStep")
        payload: Dict[str, Any] = dict(data or {})

        state = await self.store.require(workflow_id)
        end_time = utcnow()
        error = payload.get("error")
        if isinstance(error, BaseException):
            error = {"type": type(error).__name__, "message": str(error)}
            payload["error"] = error
        status = "failed" if error is not None else "completed"

        step = state.find_step(step_id)
        if step is None:
            start_time = _supplied_start_time(payload, "completeStep") or end_time
            step = StepRecord(step_id=step_id, start_time=start_time, data=payload)
            state.step_history.append(step)
        else:
            step.start_time = step.start_time or end_time
            step.data.update(payload)
        step.status = status
        step.end_time = end_time
        step.duration = duration_ms(step.start_time, end_time)
        step.error = error

        state.touch(end_time, "lastStepComplete")
        await self.store.commit(workflow_id, state)
        log = logger.warning if status == "failed" else logger.info
        log(f"Step {step_id} {status} for workflow_id={workflow_id} in {step.duration}ms")
        return StepFinished(step_id=step_id, status=status, end_time=end_time)

    @operation("updateStatus")
    async def update_status(self, workflow_id: str, step_id: str, status: str) -> StepStatusChange:
        """Set the status of ``step_id`` directly, stamping times on transitions."""
        require_identifier("workflow_id", workflow_id, "updateStatus")
        require_identifier("step_id", step_id, "updateStatus")
        if status not in STEP_STATUSES:
            raise WaymarkError(
                ErrorKind.INVALID_STATUS,
                f"Invalid status: {status}. Must be one of: {', '.join(STEP_STATUSES)}",
                {"workflowId": workflow_id, "stepId": step_id, "status": status},
            )

        state = await self.store.require(workflow_id)
        now = utcnow()
        step = state.find_step(step_id)
        if step is None:
            step = StepRecord(step_id=step_id)
            state.step_history.append(step)
            previous = None
        else:
            previous = step.status

        if status == "in-progress" and previous != "in-progress":
            step.start_time = now
            step.end_time = None
            step.duration = None
            step.error = None
        elif status in TERMINAL_STATUSES:
            step.start_time = step.start_time or now
            step.end_time = now
            step.duration = duration_ms(step.start_time, now)
        step.status = status

        state.touch(now)
        await self.store.commit(workflow_id, state)
        logger.info(f"Step {step_id} moved {previous} -> {status} for workflow_id={workflow_id}")
        return StepStatusChange(step_id=step_id, status=status)

    @operation("getStepStatus")
    async def get_step_status(self, workflow_id: str, step_id: str) -> StepRecord:
        require_identifier("workflow_id", workflow_id, "getStepStatus")
        require_identifier("step_id", step_id, "getStepStatus")
        state = await self.store.require(workflow_id)
        step = state.find_step(step_id)
        if step is None:
            raise WaymarkError(
                ErrorKind.NOT_FOUND,
                f"Step not found: {step_id}",
                {"workflowId": workflow_id, "stepId": step_id},
            )
        return step

    @operation("getWorkflowProgress")
    async def get_workflow_progress(self, workflow_id: str) -> WorkflowReport:
        require_identifier("workflow_id", workflow_id, "getWorkflowProgress")
        state = await self.store.require(workflow_id)
        return build_report(workflow_id, state)

    @operation("setVariable")
    async def set_variable(self, workflow_id: str, key: str, value: Any) -> None:
        require_identifier("workflow_id", workflow_id, "setVariable")
        require_identifier("key", key, "setVariable")
        state = await self.store.load_or_create(workflow_id)
        state.variables[key] = value
        state.touch(utcnow())
        await self.store.commit(workflow_id, state)
        logger.debug(f"Set variable {key} for workflow_id={workflow_id}")

    @operation("getVariable")
    async def get_variable(self, workflow_id: str, key: str, default: Any = None) -> Any:
        require_identifier("workflow_id", workflow_id, "getVariable")
        state = await self.store.require(workflow_id)
        return state.variables.get(key, default)
