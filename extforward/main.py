"""
FastAPI application serving behind trusted reverse proxies.
"""
import logging
from typing import Optional

from fastapi import FastAPI, Request

from extforward.core.config import settings
from extforward.core.ip_extraction import get_client_ip, get_peer_ip
from extforward.core.logging_config import setup_logging
from extforward.forwarding.config import ExtForwardConfig, load_config
from extforward.forwarding.substitution import get_address_state
from extforward.middleware import ExtForwardMiddleware, RequestLoggingMiddleware

# Initialize logging configuration at startup
setup_logging()

logger = logging.getLogger(__name__)


def create_application(config: Optional[ExtForwardConfig] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        config: Forwarding configuration (default: loaded from settings)

    Raises:
        ConfigurationError: If the forwarding configuration is malformed
    """
    if config is None:
        config = load_config()

    app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION)

    # Configure Request Logging
    # Added before ExtForwardMiddleware so it runs inside it and logs the
    # forwarded client rather than the proxy
    app.add_middleware(RequestLoggingMiddleware, skip_paths=["/health"])

    # Configure forwarded address resolution (outermost)
    app.add_middleware(ExtForwardMiddleware, config=config)

    trusted = len(config.forwarder)
    logger.info(
        "Forwarded address resolution configured "
        f"({trusted} forwarder entries, {len(config.conditions)} conditional scopes)"
    )

    @app.get("/health", tags=["health"])
    async def health_check():
        return {"status": "healthy"}

    @app.get("/whoami", tags=["debug"])
    async def whoami(request: Request):
        """Report the address and scheme the application sees."""
        state = get_address_state(request.scope)
        return {
            "client": get_client_ip(request),
            "peer": get_peer_ip(request),
            "scheme": request.url.scheme,
            "forwarded": bool(state and state.is_substituted),
        }

    return app


app = create_application()
