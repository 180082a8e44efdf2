"""Run the analysis relay: ``python -m aperioesca.relay``."""

import uvicorn

from aperioesca.config import load_settings
from aperioesca.logging_config import configure_logging
from aperioesca.relay.app import create_app


def main() -> None:
    settings = load_settings()
    configure_logging(settings.log_level)
    uvicorn.run(
        create_app(settings),
        host=settings.relay_host,
        port=settings.relay_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
