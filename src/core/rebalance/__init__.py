"""Layer rebalancing package."""

from src.core.rebalance.engine import run_rebalance, validate_preconditions

__all__ = ["run_rebalance", "validate_preconditions"]
