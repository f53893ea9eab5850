"""Repositories implementation package."""

from .event_repository import EventRepository
from .scraping_job_repository import ScrapingJobRepository

__all__ = ["EventRepository", "ScrapingJobRepository"]
