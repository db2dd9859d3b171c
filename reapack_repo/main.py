import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from reapack_repo import __version__
from reapack_repo.api.admin import router as admin_router
from reapack_repo.api.publish import router as publish_router
from reapack_repo.core.dependencies import get_repository, get_scanner
from reapack_repo.domain.errors import RepositoryError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def periodic_rescan_loop() -> None:
    """
    Background task that rescans the repository tree every refresh_interval_seconds.
    """
    while True:
        config = get_repository().config
        await asyncio.sleep(config.refresh_interval_seconds)
        try:
            result = get_scanner().scan()
            if result.changed:
                logger.info("Index updated by periodic rescan")
        except (RepositoryError, OSError) as e:
            logger.error(f"Periodic rescan failed: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Load the repository (config + index) and start the periodic rescan.
    """
    repo = get_repository()
    config = repo.config
    logger.info(f"Serving repository {config.name} from {repo.db.root}")

    task = None
    if config.refresh_interval_seconds > 0 and config.remote_url:
        task = asyncio.create_task(periodic_rescan_loop())
    try:
        yield
    finally:
        if task is not None:
            task.cancel()


app = FastAPI(
    title="ReaPack Repository",
    version=__version__,
    description="Publishes a ReaPack index.xml and the script payloads it references.",
    lifespan=lifespan,
)


@app.get("/health")
async def health() -> dict:
    """
    Lightweight health check endpoint.
    """
    return {"status": "ok"}


app.include_router(publish_router, tags=["publish"])
app.include_router(admin_router, tags=["admin"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "reapack_repo.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
