"""
Core module for application infrastructure.
"""
from app.core.scheduler import scheduler, setup_scheduler, start_scheduler, stop_scheduler, get_scheduler_status

__all__ = [
    "scheduler",
    "setup_scheduler", 
    "start_scheduler", 
    "stop_scheduler",
    "get_scheduler_status"
]
