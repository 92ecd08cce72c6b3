"""Group practice scan route.

POST /api/group-scan takes 2-50 NPIs, scans them concurrently and returns
the aggregated practice report. The request is validated in full before
any provider is looked up.
"""

from typing import Any

import click
from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field

from data.errors import BatchValidationError
from profiler.practice import DEFAULT_PRACTICE_NAME, scan_practice
from scanner.batch import validate_npis

router = APIRouter(prefix="/api", tags=["group-scan"])


class GroupScanRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Checked by validate_npis, which rejects any non-list with a 400
    npis: Any = None
    practice_name: str | None = Field(default=None, alias="practiceName")


@router.post("/group-scan")
async def group_scan(body: GroupScanRequest, request: Request):
    try:
        npis = validate_npis(body.npis)
    except BatchValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.format_message())

    state = request.app.state
    try:
        result = await scan_practice(
            npis,
            state.resolver,
            state.benchmarks,
            practice_name=body.practice_name or DEFAULT_PRACTICE_NAME,
            max_concurrent=state.max_concurrent,
            timeout=state.timeout,
            rules=state.rules,
        )
    except Exception as exc:
        click.echo(f"[group-scan] Error: {exc!r}")
        raise HTTPException(status_code=500, detail="Internal server error") from exc

    return {"groupResult": result.to_dict()}
