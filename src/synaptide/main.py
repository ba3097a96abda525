"""Synaptide entry point."""

import logging
import sys

import uvicorn
from dotenv import find_dotenv, load_dotenv

from .api import create_app
from .config import load_config

USAGE = "usage: synaptide [serve]"


def main() -> None:
    """Main entry point."""
    load_dotenv(find_dotenv(usecwd=True))

    command = sys.argv[1] if len(sys.argv) > 1 else "serve"
    if command != "serve":
        print(USAGE, file=sys.stderr)
        sys.exit(2)

    config = load_config()
    logging.basicConfig(
        level=config.log_level.upper(),
        format="[%(asctime)s] %(levelname)s %(name)s - %(message)s",
    )

    uvicorn.run(create_app(config), host=config.host, port=config.port)


if __name__ == "__main__":
    main()
