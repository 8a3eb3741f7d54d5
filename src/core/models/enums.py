import enum


class ReviewPlatform(str, enum.Enum):
    google = "google"


class StarRating(str, enum.Enum):
    ONE = "ONE"
    TWO = "TWO"
    THREE = "THREE"
    FOUR = "FOUR"
    FIVE = "FIVE"


class ReplyTone(str, enum.Enum):
    professional = "professional"
    friendly = "friendly"
    casual = "casual"
