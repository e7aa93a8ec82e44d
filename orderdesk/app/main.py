from fastapi import FastAPI

from orderdesk.app.api.errors import setup_exception_handlers
from orderdesk.app.api.v1.router import router as v1_router
from orderdesk.app.core.config import get_settings
from orderdesk.app.core.logging import configure_logging
from orderdesk.services.events import EventBus
from orderdesk.services.notifications import OrderNotifier, logging_sender


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)

    app = FastAPI(title=settings.APP_NAME, version="0.1.0")

    # bus propre à l'application : créé au démarrage, jeté à l'arrêt
    app.state.event_bus = EventBus()
    OrderNotifier(logging_sender).attach(app.state.event_bus)

    setup_exception_handlers(app)
    app.include_router(v1_router, prefix="/v1")
    return app


app = create_app()
