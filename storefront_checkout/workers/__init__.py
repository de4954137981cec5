"""Background workers."""
from .stock_compensation_worker import run_compensation_cycle, start_compensation_worker

__all__ = ["run_compensation_cycle", "start_compensation_worker"]
