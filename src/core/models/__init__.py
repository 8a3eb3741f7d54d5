from src.core.models.base import Base
from src.core.models.enums import ReplyTone, ReviewPlatform, StarRating
from src.core.models.google_token import GoogleToken
from src.core.models.review import Review

__all__ = [
    "Base",
    "GoogleToken",
    "ReplyTone",
    "Review",
    "ReviewPlatform",
    "StarRating",
]
