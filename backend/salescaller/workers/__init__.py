"""
Workers Package
Lane workers that consume the job queue
"""
from salescaller.workers.lane_worker import LaneWorker, WorkerPool
from salescaller.workers.registry import HandlerRegistry

__all__ = [
    "HandlerRegistry",
    "LaneWorker",
    "WorkerPool"
]
