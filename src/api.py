"""
FastAPI surface for the life-metrics insight engine.

Route handlers are defined here; shared utilities live in routes/helpers.py.
Identity is passed explicitly as ``user_id``; authentication happens in
front of this service.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from models import InsightTimeoutError, InvalidRangeError
from pipeline.export import EXPORT_FORMATS, export_data
from routes.helpers import _conn_str, get_engine, get_store, jsonable, parse_date_range

try:
    from pipeline.migrations import schema_audit
except ImportError:
    schema_audit = None

log = logging.getLogger("api")


# ─── App setup ─────────────────────────────────────────────

app = FastAPI(title="Life Metrics Insight API", version="1.0.0")

_origin_env = os.getenv("FRONTEND_ORIGINS", "")
_origins = [o.strip() for o in _origin_env.split(",") if o.strip()] or [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


@app.exception_handler(InvalidRangeError)
def invalid_range_handler(request: Request, exc: InvalidRangeError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"error": "invalid_date_range", "detail": str(exc)})


@app.exception_handler(InsightTimeoutError)
def insight_timeout_handler(request: Request, exc: InsightTimeoutError) -> JSONResponse:
    return JSONResponse(status_code=504, content={"error": "insight_timeout", "detail": str(exc)})


# ─── Routes ────────────────────────────────────────────────

@app.get("/")
def root() -> Dict[str, Any]:
    return {"service": "life-metrics-insights", "status": "ok"}


@app.get("/health-check")
def health_check() -> JSONResponse:
    try:
        get_store().ping()
        return JSONResponse({"status": "Online", "message": "Online"})
    except Exception as e:
        return JSONResponse(
            status_code=200,
            content={
                "status": "Waking up",
                "message": f"Service starting or DB unavailable: {e}",
            },
        )


@app.get("/api/v1/analytics/correlations")
def correlations(
    user_id: int = Query(...),
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None),
) -> Dict[str, Any]:
    rng = parse_date_range(start_date, end_date)
    results = get_engine().calculate_correlations(user_id, rng)
    return {"data": [c.to_dict() for c in results]}


@app.get("/api/v1/analytics/trends/{metric_id}")
def trends(
    metric_id: int,
    user_id: int = Query(...),
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None),
) -> Dict[str, Any]:
    rng = parse_date_range(start_date, end_date)
    trend = get_engine().detect_trends(user_id, metric_id, rng)
    return {"data": jsonable(trend.to_dict())}


@app.get("/api/v1/analytics/insights")
def insights(
    user_id: int = Query(...),
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None),
) -> Dict[str, Any]:
    rng = parse_date_range(start_date, end_date)
    bundle = get_engine().generate_insights(user_id, rng)
    return {"data": jsonable(bundle.to_dict())}


@app.get("/api/v1/analytics/insights/stored")
def stored_insights(
    user_id: int = Query(...),
    kind: Optional[str] = Query(default=None, alias="type"),
) -> Dict[str, Any]:
    try:
        return {"data": get_store().list_insights(user_id, kind)}
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


class RefreshRequest(BaseModel):
    user_id: int
    start_date: Optional[str] = None
    end_date: Optional[str] = None


def run_refresh_background(user_id: int, date_range=None) -> None:
    try:
        get_engine().refresh_insights(user_id, date_range)
    except Exception as e:
        log.error("Background insight refresh failed for user %s: %s", user_id, e)


@app.post("/api/v1/analytics/insights/refresh", status_code=202)
def refresh(body: RefreshRequest, background_tasks: BackgroundTasks) -> Dict[str, Any]:
    rng = parse_date_range(body.start_date, body.end_date)
    background_tasks.add_task(run_refresh_background, body.user_id, rng)
    return {"user_id": body.user_id, "status": "scheduled"}


@app.get("/api/v1/analytics/export")
def export(user_id: int = Query(...), fmt: str = Query(default="json", alias="format")) -> Response:
    if fmt not in EXPORT_FORMATS:
        return JSONResponse(status_code=400, content={"error": "Unsupported export format"})
    try:
        body = export_data(user_id, get_store(), fmt)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
    return Response(
        content=body,
        media_type=EXPORT_FORMATS[fmt],
        headers={"content-disposition": f'attachment; filename="insights_export.{fmt}"'},
    )


@app.get("/api/v1/admin/migration-audit")
def migration_audit() -> Dict[str, Any]:
    if schema_audit is None:
        raise HTTPException(status_code=500, detail="migration module not available")
    try:
        return schema_audit(_conn_str())
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
