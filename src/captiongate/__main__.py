"""Entry point: ``python -m captiongate`` or the ``captiongate`` script."""

import structlog
import uvicorn

from captiongate.common.logging import configure_logging
from captiongate.config import Settings, get_settings

logger = structlog.stdlib.get_logger()


def warn_on_split_state(settings: Settings) -> None:
    """Log when several workers would each keep private fallback state."""
    workers = settings.server.workers
    if workers <= 1:
        return

    if settings.storage.fallback_enabled:
        logger.warning(
            "server.per_worker_fallbacks",
            workers=workers,
            note="memory fallbacks are per worker; degraded quota and block state diverge",
        )


def main() -> None:
    settings = get_settings()
    configure_logging(settings.logging.level, settings.logging.format)
    warn_on_split_state(settings)

    logger.info(
        "server.starting",
        host=settings.server.host,
        port=settings.server.port,
        workers=settings.server.workers,
        quota_backend=settings.quota.backend,
    )
    uvicorn.run(
        "captiongate.app:create_app",
        factory=True,
        host=settings.server.host,
        port=settings.server.port,
        workers=settings.server.workers,
        log_level=settings.logging.level.lower(),
        # Client addresses feed anonymous quota keys
        proxy_headers=True,
    )


if __name__ == "__main__":
    main()
