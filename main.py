import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
import uvicorn

from app.controller.sizing_controller import router as sizing_router, metrics_router, sizing_service
from config.settings import CONFIG

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        sizing_service.reload_configuration()
    except Exception as e:
        # the status condition carries the detail; sizing stays halted until a valid configuration arrives
        logger.error("sizing.configuration.load_failed", extra={"error": str(e)})

    stop = asyncio.Event()
    task = None
    if CONFIG["reconcile_interval"] > 0:
        task = asyncio.create_task(sizing_service.run_periodic(CONFIG["reconcile_interval"], stop))
    try:
        yield
    finally:
        stop.set()
        if task is not None:
            await task


def create_app() -> FastAPI:
    logging.basicConfig(
        level=CONFIG["log_level"],
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    app = FastAPI(title="Cluster-Sizing", version="1.0.0", lifespan=lifespan)
    app.include_router(sizing_router)
    app.include_router(metrics_router)
    return app

app = create_app()

if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
