"""API routers."""

from bounty_market_service.routers import directory, health, submissions, tasks

__all__ = ["directory", "health", "submissions", "tasks"]
