import logging

from fastapi import FastAPI

from community_messaging.api.routes.auth import router as auth_router
from community_messaging.api.routes.messages import router as messages_router
from community_messaging.core.config import settings
from community_messaging.core.errors import MessagingError, messaging_error_handler
from community_messaging.core.logging_config import setup_logging
from community_messaging.db.init_db import init_db
from community_messaging.middleware.csrf import CSRFMiddleware
from community_messaging.security.csrf import init_csrf_manager

setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Community Messaging", version="0.1.0")

# Initialize CSRF manager
init_csrf_manager(settings.JWT_SECRET)

app.add_middleware(CSRFMiddleware)
app.add_exception_handler(MessagingError, messaging_error_handler)

app.include_router(auth_router)
app.include_router(messages_router)


@app.on_event("startup")
def _startup() -> None:
    init_db()
    logger.info("%s started (%s)", settings.app_name, settings.app_env)


@app.get("/health")
def health():
    return {"status": "ok"}
