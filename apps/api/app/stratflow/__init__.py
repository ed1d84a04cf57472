from app.stratflow.api import router
from app.stratflow.models import SFBoard, SFColumn, SFIssue, SFProject
from app.stratflow.service import StratflowService, stratflow_service

__all__ = ["router", "SFProject", "SFBoard", "SFColumn", "SFIssue", "StratflowService", "stratflow_service"]
