from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

router = APIRouter()


@router.get("/metrics")
def prometheus_metrics():
    """Expose the default registry in Prometheus text format"""
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)
