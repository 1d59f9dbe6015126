"""
Metrics Router
Read-model observability and feature flag diagnostics
"""
from fastapi import APIRouter
import time

from services.feature_flags import feature_flags
from services.obs.metrics import metrics_collector

router = APIRouter()


@router.get("/metrics/read-model")
async def get_read_model_metrics():
    """Resolution counters, P50/P95 timings and degraded collections"""
    return {
        "metrics": metrics_collector.get_summary(),
        "flags": feature_flags.get_flag_diagnostics(),
        "timestamp": time.time(),
    }
