"""Metrics endpoint for Prometheus scraping."""

from fastapi import APIRouter, Response

from ..core.observability import get_prometheus_metrics

router = APIRouter(tags=["observability"])


@router.get("/metrics", response_class=Response, summary="Prometheus Metrics")
async def metrics() -> Response:
    """Prometheus metrics in text exposition format."""
    return Response(
        content=get_prometheus_metrics(),
        media_type="text/plain; version=0.0.4; charset=utf-8"
    )
