from fastapi import APIRouter
from models.schemas import DetectionSettings, IssueLabel, ViewMode
import config as cfg

router = APIRouter()


@router.get("/api/health")
async def health():
    return {"status": "ok", "environment": cfg.ENVIRONMENT}


@router.get("/api/config")
async def api_config():
    """Default settings and detection constants the client needs to render feedback."""
    return {
        "settings": DetectionSettings().model_dump(),
        "sensitivity": {"min": cfg.SENSITIVITY_MIN, "max": cfg.SENSITIVITY_MAX},
        "detectionFps": cfg.DETECTION_FPS,
        "viewModes": [v.value for v in ViewMode],
        "issueLabels": [i.value for i in IssueLabel],
        "thresholds": cfg.THRESHOLDS,
    }
