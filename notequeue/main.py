"""
notequeue API entry point.

Serves the jobs API and, unless disabled, runs a scheduler in the same
process so facade requests made here have a local worker to run them.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from notequeue.config import settings, setup_opentelemetry
from notequeue.api.v1.router import api_router
from notequeue.api.v1.helpers.responses import queue_error_handler
from notequeue.bootstrap import attach_to_app, build_queue
from notequeue.core.errors import QueueError
from logging import getLogger, Filter
import logging

logger = getLogger(__name__)
logger.setLevel(logging.INFO)


class HealthCheckFilter(Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        return record.getMessage().find("/health") == -1


logging.getLogger("uvicorn.access").addFilter(HealthCheckFilter())


app = FastAPI(title=settings.app_name, debug=settings.debug, redirect_slashes=False)
app.add_exception_handler(QueueError, queue_error_handler)


@app.on_event("startup")
async def startup_event():
    try:
        logger.info("--- Starting notequeue startup ---")

        setup_opentelemetry()

        components = build_queue()
        attach_to_app(app, components)

        if settings.run_embedded_scheduler:
            await components.scheduler.start()

        logger.info("--- notequeue startup completed ---")
    except Exception as e:
        logger.error(f"Failed to set up job queue: {e}", exc_info=True)


@app.on_event("shutdown")
async def shutdown_event():
    try:
        logger.info("--- Server shutting down! ---")

        scheduler = getattr(app.state, "scheduler", None)
        if scheduler is not None:
            await scheduler.stop(drain=True, timeout=30)

        from notequeue.db.session import dispose_engine
        from notequeue.db.valkey import close_valkey_client

        await dispose_engine()
        logger.info("--- Database connections closed. ---")

        await close_valkey_client()
    except Exception as e:
        logger.error(f"Error during shutdown: {e}")


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api/v1")


@app.get("/")
def read_root():
    return {"message": "Welcome to notequeue"}


@app.get("/health")
def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
