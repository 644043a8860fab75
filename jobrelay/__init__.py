"""
Job Relay

An at-least-once asynchronous job execution engine: jobs are queued in
PostgreSQL, dispatched to HTTP worker endpoints under a per-(owner, job type)
concurrency cap, correlated back when the worker responds, retried with
exponential backoff, and recovered via lease expiry when a worker never answers.
"""

__version__ = "1.0.0"
