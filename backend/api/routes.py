from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from geo.bbox import BBox
from partitioning.engine import GridEngine
from partitioning.singleton import get_engine
from partitioning.types import CommitResult, GeometryRecord, PartitionRecord

router = APIRouter()


class ApiBBox(BaseModel):
    xmin: float
    ymin: float
    xmax: float
    ymax: float


class ApiPartition(BaseModel):
    tileKey: str
    physicalName: str
    createdAt: datetime
    indexed: bool


class ApiRouteRequest(BaseModel):
    bbox: ApiBBox
    excludeDefault: bool = False


class ApiRouteResponse(BaseModel):
    tileKeys: list[str]


class ApiIngestRow(BaseModel):
    rowId: str = Field(min_length=1)
    # WKT; null rows are accepted and stored in the default partition.
    wkt: str | None = None
    srid: int | None = None
    props: dict[str, Any] = Field(default_factory=dict)


class ApiIngestRequest(BaseModel):
    rows: list[ApiIngestRow] = Field(min_length=1)


class ApiCommit(BaseModel):
    rowId: str
    tileKey: str
    physicalName: str
    fallbackReason: str | None = None


class ApiIngestResponse(BaseModel):
    committed: list[ApiCommit]


class ApiQueryRequest(BaseModel):
    wkt: str
    srid: int | None = None
    excludeDefault: bool = False
    timeoutS: float | None = Field(default=None, gt=0.0)


class ApiRowRef(BaseModel):
    rowId: str
    partition: str


class ApiQueryResponse(BaseModel):
    rows: list[ApiRowRef]


def _partition(rec: PartitionRecord) -> ApiPartition:
    return ApiPartition(
        tileKey=rec.tile_key,
        physicalName=rec.physical_name,
        createdAt=rec.created_at,
        indexed=rec.indexed,
    )


def _commit(res: CommitResult) -> ApiCommit:
    return ApiCommit(
        rowId=res.row_id,
        tileKey=res.tile_key,
        physicalName=res.physical_name,
        fallbackReason=res.fallback_reason,
    )


@router.get("/partitions", response_model=list[ApiPartition])
def list_partitions(engine: GridEngine = Depends(get_engine)):
    return [_partition(r) for r in engine.list_all()]


@router.put("/partitions/{tile_key}", response_model=ApiPartition)
def ensure_partition(tile_key: str, engine: GridEngine = Depends(get_engine)):
    try:
        rec = engine.ensure_partition(tile_key)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return _partition(rec)


@router.post("/route", response_model=ApiRouteResponse)
def route(body: ApiRouteRequest, engine: GridEngine = Depends(get_engine)):
    b = body.bbox
    keys = engine.route(
        BBox(xmin=b.xmin, ymin=b.ymin, xmax=b.xmax, ymax=b.ymax),
        exclude_default=body.excludeDefault,
    )
    return ApiRouteResponse(tileKeys=sorted(keys))


@router.post("/ingest", response_model=ApiIngestResponse)
def ingest(body: ApiIngestRequest, engine: GridEngine = Depends(get_engine)):
    records = [
        GeometryRecord(row_id=r.rowId, geometry=r.wkt, srid=r.srid, props=r.props)
        for r in body.rows
    ]
    if len(records) == 1:
        results = [engine.ingest(records[0])]
    else:
        results = engine.ingest_many(records)
    return ApiIngestResponse(committed=[_commit(r) for r in results])


@router.post("/query", response_model=ApiQueryResponse)
def query(body: ApiQueryRequest, engine: GridEngine = Depends(get_engine)):
    refs = engine.plan(
        body.wkt,
        srid=body.srid,
        exclude_default=body.excludeDefault,
        timeout_s=body.timeoutS,
    )
    return ApiQueryResponse(
        rows=[ApiRowRef(rowId=r.row_id, partition=r.partition) for r in refs]
    )
