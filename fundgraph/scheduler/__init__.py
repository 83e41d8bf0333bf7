"""
Scheduler module for periodic graph synchronization.
"""
from .jobs import ReprocessResult, run_graph_sync, run_reprocess, setup_scheduler, shutdown_scheduler

__all__ = ["ReprocessResult", "run_graph_sync", "run_reprocess", "setup_scheduler", "shutdown_scheduler"]
