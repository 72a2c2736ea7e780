# SQLAlchemy models
from .base import Base, JSONDocument
from .tutoring import (
    ProblemAttemptRecord,
    ProblemPoolRecord,
    StudentModelRecord,
)

__all__ = [
    # Base
    "Base",
    "JSONDocument",
    # Tutoring
    "StudentModelRecord",
    "ProblemPoolRecord",
    "ProblemAttemptRecord",
]
