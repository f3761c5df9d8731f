import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from tickerbar.api.server import router
from tickerbar.clients.yahoo_client import YahooChartClient
from tickerbar.service import build_services
from tickerbar.settings import Settings, configure_logging, load_settings

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    client: Optional[YahooChartClient] = None,
    start_polling: bool = True,
) -> FastAPI:

    # --- Startup: load settings, open the store and start the poll loop ---
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = settings or load_settings()
        configure_logging(cfg.log_level)
        services = await build_services(cfg, client=client)
        app.state.services = services
        if start_polling:
            services.start()
        logger.info("tickerbar started (db=%s, upstream=%s)", cfg.db_path, cfg.base_url)
        try:
            yield
        finally:
            await services.close()
            logger.info("tickerbar stopped")

    app = FastAPI(title="Tickerbar Quote API", version="0.1.0", lifespan=lifespan)
    app.include_router(router)
    return app


app = create_app()


def main():
    import uvicorn

    uvicorn.run("tickerbar.app:app", host="127.0.0.1", port=8000)


if __name__ == "__main__":
    main()
