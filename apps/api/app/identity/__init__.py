from app.identity.models import Role, User, UserRole

__all__ = ["User", "Role", "UserRole"]
