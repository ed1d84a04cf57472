from app.terms.api import public_router, router
from app.terms.models import CustomTerms, TermsReviewRequest
from app.terms.service import TermsService, terms_service

__all__ = ["router", "public_router", "CustomTerms", "TermsReviewRequest", "TermsService", "terms_service"]
