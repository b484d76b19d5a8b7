"""
Run API endpoints
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Set
from uuid import uuid4

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..engine import Engine
from ..errors import BuildError, EntryTaskMissing, ErrorResponse
from ..loader import load_modules, parse_modules
from ..report import RunReport

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["runs"])

# Set by create_app()
engine: Optional[Engine] = None

_background: Set[asyncio.Task] = set()


def set_engine(instance: Engine):
    """Install the engine the endpoints operate on."""
    global engine
    engine = instance


class RunRequest(BaseModel):
    # Parsed module trees, or a YAML document holding them
    modules: List[Dict[str, Any]] = Field(default_factory=list)
    document: Optional[str] = None
    entry: Optional[str] = None
    run_id: Optional[str] = None
    # Return immediately with the run id instead of waiting for the report
    background: bool = False


class CancelRequest(BaseModel):
    reason: str = "cancelled by operator"


def _error(status_code: int, response: ErrorResponse) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=response.to_dict())


def _report_response(report: RunReport) -> JSONResponse:
    # Outputs may hold values JSON cannot encode natively
    return JSONResponse(content=json.loads(report.to_json(indent=None)))


def _require_engine() -> Engine:
    if engine is None:
        raise RuntimeError("Engine not initialized")
    return engine


@router.get("/health")
async def health():
    current = _require_engine()
    return {
        "status": "ok",
        "active_runs": current.active_runs,
        "operations": len(current.registry),
        "mcp": current.gateway.status() if current.gateway else None,
    }


@router.post("/runs")
async def create_run(request: RunRequest):
    """Build and execute a module set; build errors are rejected with 422."""
    current = _require_engine()
    try:
        modules = parse_modules(request.modules, source="request") if request.modules else []
        if request.document:
            modules.extend(load_modules(request.document))
        graph = current.build(modules)
        entry = request.entry or graph.run_target
        if entry is None:
            raise EntryTaskMissing()
        if entry not in graph:
            raise EntryTaskMissing(entry)
    except BuildError as e:
        logger.warning(f"Rejected run request: {e.message}")
        return _error(422, ErrorResponse.from_exception(e))

    if request.run_id and (request.run_id in current.active_runs or current.get_report(request.run_id)):
        return _error(409, ErrorResponse(
            error_code="RUN_EXISTS",
            message=f"Run '{request.run_id}' already exists",
            details={"run_id": request.run_id},
        ))

    if request.background:
        run_id = request.run_id or uuid4().hex[:12]
        task = asyncio.create_task(current.run(graph, entry, run_id=run_id))
        _background.add(task)
        task.add_done_callback(_background.discard)
        # Let the run register itself before replying
        await asyncio.sleep(0)
        return JSONResponse(status_code=202, content={"run_id": run_id, "status": "running"})

    report = await current.run(graph, entry, run_id=request.run_id)
    return _report_response(report)


@router.get("/runs/{run_id}")
async def get_run(run_id: str):
    current = _require_engine()
    progress = current.get_progress(run_id)
    if progress is not None:
        return {"run_id": run_id, "status": "running", "progress": progress}
    report = current.get_report(run_id)
    if report is None:
        return _error(404, ErrorResponse.not_found("run", run_id))
    return _report_response(report)


@router.post("/runs/{run_id}/cancel")
async def cancel_run(run_id: str, request: Optional[CancelRequest] = None):
    current = _require_engine()
    reason = request.reason if request else "cancelled by operator"
    if run_id not in current.active_runs:
        if current.get_report(run_id) is not None:
            return {"run_id": run_id, "cancelled": False, "detail": "run already finished"}
        return _error(404, ErrorResponse.not_found("run", run_id))
    cancelled = current.cancel(run_id, reason)
    return {"run_id": run_id, "cancelled": cancelled}
