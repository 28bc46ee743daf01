"""
Kindred — ORM model registry.

Importing every model here ensures that Alembic (and any other tool that
inspects ``Base.metadata``) discovers all tables automatically.
"""

from app.models.user import User
from app.models.photo import Photo
from app.models.match import Match, Like, Pass
from app.models.compatibility import CompatibilityCacheEntry
from app.models.push_token import PushToken

__all__ = [
    "User",
    "Photo",
    "Match",
    "Like",
    "Pass",
    "CompatibilityCacheEntry",
    "PushToken",
]
