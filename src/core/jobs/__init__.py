from src.core.jobs.models import (
    RebalanceJobAcceptedResponse,
    RebalanceJobRecord,
    RebalanceJobStatusResponse,
)
from src.core.jobs.repository import RebalanceJobRepository
from src.core.jobs.service import RebalanceJobNotFoundError, RebalanceJobService

__all__ = [
    "RebalanceJobAcceptedResponse",
    "RebalanceJobRecord",
    "RebalanceJobStatusResponse",
    "RebalanceJobNotFoundError",
    "RebalanceJobRepository",
    "RebalanceJobService",
]
