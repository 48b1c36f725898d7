from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from api.routes import router
from partitioning.errors import (
    GridError,
    InvalidGeometry,
    PartitionCreateFailed,
    PartitionScanFailed,
    QueryTimedOut,
    QueryTooBroad,
    ReferenceSystemMismatch,
    RowWriteFailed,
)
from partitioning.logging_utils import configure_logging

configure_logging()

app = FastAPI(title="tilegrid")
app.include_router(router)


def _status_for(exc: GridError) -> int:
    if isinstance(exc, (InvalidGeometry, QueryTooBroad)):
        return 422
    if isinstance(exc, ReferenceSystemMismatch):
        return 409
    if isinstance(exc, QueryTimedOut):
        return 504
    if isinstance(exc, (PartitionCreateFailed, RowWriteFailed, PartitionScanFailed)):
        return 503
    return 500


@app.exception_handler(GridError)
async def grid_error_handler(request: Request, exc: GridError):
    payload = {"error": type(exc).__name__, "detail": str(exc)}
    committed = getattr(exc, "committed", None)
    if committed is not None:
        payload["committedRowIds"] = [c.row_id for c in committed]
    return JSONResponse(status_code=_status_for(exc), content=payload)
