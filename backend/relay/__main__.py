"""Run the chat relay with uvicorn: ``python -m relay``."""
import uvicorn

from relay.config import get_config


def main() -> None:
    config = get_config()
    uvicorn.run(
        "relay.main:app",
        host=config.server.host,
        port=config.server.port,
        log_level=config.server.log_level,
    )


if __name__ == "__main__":
    main()
