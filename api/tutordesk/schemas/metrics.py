from pydantic import BaseModel


class TutorMetricsOut(BaseModel):
    rating: float = 0.0
    total_reviews: int = 0
    verified: bool = False
    profile_completion_percentage: int = 0
    response_time_hours: int | None = None


class ResponseTimeOut(BaseModel):
    response_time_hours: int
    sampled_pairs: int
    persisted: bool
