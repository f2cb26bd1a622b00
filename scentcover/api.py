"""
HTTP read API for coverage.

Serves the accumulated coverage to a map UI or any other reader. Geometry
is returned as plain lists of (lon, lat) rings; rendering formats are the
client's business.

Usage:
    app = create_app(service)
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from pydantic import BaseModel, Field

from .metrics import metrics
from .models import Measurement, as_utc
from .service import CoverageService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["coverage"])


# ============================================================================
# Request/Response Models
# ============================================================================

class MeasurementRequest(BaseModel):
    """One measurement to compute a polygon for (not ingested)."""
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    wind_direction_deg: float = Field(..., description="Direction the wind blows from")
    wind_speed_mps: float = Field(..., ge=0)
    source_id: str = "adhoc"
    source_name: str = "Ad hoc"
    session_id: str = ""
    sequence: int = 0
    timestamp: Optional[datetime] = None

    def to_measurement(self) -> Measurement:
        return Measurement(
            source_id=self.source_id,
            source_name=self.source_name,
            session_id=self.session_id,
            sequence=self.sequence,
            timestamp=self.timestamp or datetime.now(timezone.utc),
            latitude=self.latitude,
            longitude=self.longitude,
            wind_direction_deg=self.wind_direction_deg,
            wind_speed_mps=self.wind_speed_mps,
        )


class PolygonResponse(BaseModel):
    """Single coverage polygon."""
    source_id: str
    latitude: float
    longitude: float
    wind_direction_deg: float
    wind_speed_mps: float
    area_m2: float
    kind: str
    is_valid: bool
    ring: List[Tuple[float, float]]


class CoverageResponse(BaseModel):
    """Global or filtered coverage."""
    version: int
    computed_at: str
    total_area_m2: float
    total_area_ha: float
    source_count: int
    polygon_count: int
    coverage_efficiency: float
    source_ids: List[str]
    session_ids: List[str]
    vertex_count: int
    rings: List[List[Tuple[float, float]]] = []
    holes: List[List[Tuple[float, float]]] = []


# ============================================================================
# Dependencies
# ============================================================================

def get_service(request: Request) -> CoverageService:
    service = getattr(request.app.state, "coverage_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Coverage service not configured")
    return service


def _coverage_response(coverage, include_geometry: bool) -> CoverageResponse:
    data = coverage.to_dict(include_geometry=include_geometry)
    return CoverageResponse(**{k: v for k, v in data.items() if k in CoverageResponse.model_fields})


# ============================================================================
# REST Endpoints
# ============================================================================

@router.get("/coverage", response_model=CoverageResponse)
async def get_global_coverage(
    include_geometry: bool = True,
    service: CoverageService = Depends(get_service),
):
    """Current union of every source's coverage."""
    return _coverage_response(service.get_global_coverage(), include_geometry)


@router.get("/coverage/range", response_model=CoverageResponse)
async def get_coverage_between(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    include_geometry: bool = True,
    service: CoverageService = Depends(get_service),
):
    """Coverage of sources active within [start, end]."""
    start, end = as_utc(start), as_utc(end)
    if start and end and start > end:
        raise HTTPException(status_code=400, detail="start must not be after end")
    return _coverage_response(service.get_coverage_between(start, end), include_geometry)


@router.get("/coverage/sessions/{session_id}", response_model=CoverageResponse)
async def get_session_coverage(
    session_id: str,
    include_geometry: bool = True,
    service: CoverageService = Depends(get_service),
):
    """Coverage of sources that reported in one session."""
    return _coverage_response(service.get_session_coverage(session_id), include_geometry)


@router.get("/coverage/sources/{source_id}")
async def get_source_coverage(
    source_id: str,
    include_geometry: bool = True,
    service: CoverageService = Depends(get_service),
) -> Dict:
    """Accumulated coverage of a single source."""
    coverage = service.get_source_coverage(source_id)
    if coverage is None:
        raise HTTPException(status_code=404, detail=f"No coverage for source {source_id}")
    return coverage.to_dict(include_geometry=include_geometry)


@router.get("/status")
async def get_status(service: CoverageService = Depends(get_service)) -> Dict:
    """Ingestion and per-source queue status."""
    return service.get_status().to_dict()


@router.get("/metrics")
async def get_metrics() -> Dict:
    return metrics.get_summary()


@router.post("/polygon", response_model=PolygonResponse)
async def compute_polygon(
    request: MeasurementRequest,
    service: CoverageService = Depends(get_service),
):
    """Compute the coverage polygon for a posted measurement without ingesting it."""
    polygon = service.compute_polygon_for_measurement(request.to_measurement())
    return PolygonResponse(**{k: v for k, v in polygon.to_dict().items()
                              if k in PolygonResponse.model_fields})


def include_in_app(app: FastAPI, service: CoverageService) -> None:
    """Attach the coverage routes and service to an existing app."""
    app.state.coverage_service = service
    app.include_router(router)
    logger.info("Included coverage API routes")


def create_app(service: CoverageService) -> FastAPI:
    """
    Application factory.

    The caller owns the service lifecycle (start before serving, stop
    after), so the app can be built around a stopped service in tests.
    """
    application = FastAPI(
        title="Scent Coverage API",
        description="Read access to accumulated detection-coverage polygons.",
        version="0.1.0",
        docs_url="/api/docs",
        openapi_url="/api/openapi.json",
    )
    include_in_app(application, service)
    return application
