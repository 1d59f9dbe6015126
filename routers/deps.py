"""
Router dependencies
"""
from services.read_model import ReadModelService, build_read_model_service

_service = None


def get_read_model_service() -> ReadModelService:
    """Shared read-model service wired to the default document store."""
    global _service
    if _service is None:
        _service = build_read_model_service()
    return _service
