from src.infrastructure.rebalance_jobs.in_memory import InMemoryRebalanceJobRepository

__all__ = ["InMemoryRebalanceJobRepository"]
