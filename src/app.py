"""FastAPI app factory"""
import asyncio
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api import event_router, health_router, scraping_router
from src.core.config import settings
from src.core.database import SessionLocal, init_db
from src.core.logging import logger
from src.core.security import log_request
from src.crawlers import CrawlAdapter, DetailFetcher, SharedHttpClient
from src.crawlers.playwright import shutdown_shared_browser
from src.engine import CacheAdapter, SearchOrchestrator
from src.jobs.dispatcher import JobDispatcher
from src.jobs.executor import JobExecutor
from src.jobs.queue import JobQueue, QueueWorker
from src.jobs.worker_pool import BackgroundWorkerPool
from src.pipeline import EventProcessor
from src.scheduler.retention import RetentionScheduler
from src.services.impl.batch_scraping_service import BatchScrapingService
from src.services.impl.cache_service import CacheService
from src.services.impl.rate_limit_service import RateLimiter


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: build services, then tear them down in reverse"""
    logger.info("Starting application...")
    init_db()

    cache_service = CacheService()
    http_client = SharedHttpClient()
    adapter = CrawlAdapter.from_settings(http_client)
    processor = EventProcessor(SessionLocal, detail_fetcher=DetailFetcher(http_client))
    executor = JobExecutor(SessionLocal, adapter, processor)
    pool = BackgroundWorkerPool()

    queue = None
    queue_worker = None
    if settings.job_execution_mode == "queue":
        queue = JobQueue(cache_service.redis_client)
        queue_worker = QueueWorker(queue, executor)
        queue_worker.start()

    dispatcher = JobDispatcher(SessionLocal, executor, pool, queue=queue)
    batch_service = BatchScrapingService(SessionLocal, dispatcher)

    app.state.session_factory = SessionLocal
    app.state.cache_service = cache_service
    app.state.rate_limiter = RateLimiter(cache_service)
    app.state.orchestrator = SearchOrchestrator(SessionLocal, CacheAdapter(cache_service), dispatcher)
    app.state.batch_service = batch_service
    app.state.worker_pool = pool

    scheduler = None
    if settings.scheduler_enabled:
        scheduler = RetentionScheduler(batch_service, asyncio.get_running_loop())
        scheduler.start()

    logger.info(
        f"Application started (cache={cache_service.backend_name}, jobs={settings.job_execution_mode})"
    )
    yield

    logger.info("Shutting down application...")
    if scheduler is not None:
        scheduler.shutdown()
    if queue_worker is not None:
        await queue_worker.stop()
    await pool.shutdown()
    await http_client.close()
    await shutdown_shared_browser()
    cache_service.close()
    logger.info("Application stopped")


def create_app() -> FastAPI:
    """Build the FastAPI app (factory pattern)

    Returns:
        FastAPI app instance
    """
    app = FastAPI(
        title=settings.api_title,
        description=settings.api_description,
        version=settings.api_version,
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(event_router, dependencies=[Depends(log_request)])
    app.include_router(scraping_router, dependencies=[Depends(log_request)])

    return app


# module-level instance for uvicorn
app = create_app()
