from app.kb.api import router
from app.kb.models import KBArticle
from app.kb.service import KnowledgeBaseService, kb_service

__all__ = ["router", "KBArticle", "KnowledgeBaseService", "kb_service"]
