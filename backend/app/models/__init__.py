"""SQLAlchemy models package.

All ORM classes are imported here so Base.metadata is complete regardless of
import order (Alembic autogenerate and test schema creation rely on it).
"""

from app.models.access_token import ApiToken
from app.models.notice import Notice

__all__ = ["ApiToken", "Notice"]
