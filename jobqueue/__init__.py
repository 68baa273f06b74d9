"""
Delayed Job Queue

A database-backed job queue where independent worker processes coordinate
through atomic conditional updates on a shared table: no broker, no lock
manager, at most one lock holder per job at a time.
"""

__version__ = "1.0.0"
