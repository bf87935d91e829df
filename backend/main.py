from dotenv import load_dotenv
load_dotenv()

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import config
from relay.gateway import RelayGateway
from routes import relay, session
from store import SessionStore

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


async def _sweep_idle_sessions(gateway: RelayGateway, max_idle: float, interval: float):
    while True:
        await asyncio.sleep(interval)
        expired = gateway.sweep_idle(max_idle)
        if expired:
            logger.info("Idle sweep ended %d session(s)", expired)


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweeper = None
    if config.SESSION_IDLE_TIMEOUT_SECONDS > 0:
        sweeper = app.state.sweeper = asyncio.create_task(
            _sweep_idle_sessions(
                app.state.gateway,
                config.SESSION_IDLE_TIMEOUT_SECONDS,
                config.SESSION_SWEEP_INTERVAL_SECONDS,
            )
        )
    logger.info("%s %s ready", config.SERVICE_NAME, config.SERVICE_VERSION)
    try:
        yield
    finally:
        if sweeper is not None:
            sweeper.cancel()
            try:
                await sweeper
            except asyncio.CancelledError:
                pass


def create_app(store: Optional[SessionStore] = None) -> FastAPI:
    app = FastAPI(title=config.SERVICE_NAME, version=config.SERVICE_VERSION, lifespan=lifespan)

    app.state.store = store or SessionStore()
    app.state.gateway = RelayGateway(app.state.store)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.include_router(relay.router)
    app.include_router(session.router)

    @app.get("/")
    def health():
        return {
            "status": "ok",
            "service": config.SERVICE_NAME,
            "version": config.SERVICE_VERSION,
            "ready": True,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=config.HOST, port=config.PORT, log_level=config.LOG_LEVEL.lower())
