"""
Worker module.
Contains the polling worker and its locking, selection and retry parts.
"""

from jobqueue.worker.main import Worker, run

__all__ = ["Worker", "run"]
