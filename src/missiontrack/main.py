"""Application entry point for the missiontrack retention worker."""

import asyncio

from missiontrack.app import App
from missiontrack.config import Config
from missiontrack.logging import setup_logging
from missiontrack.runner import serve


def main() -> None:
    config = Config()
    setup_logging(config.debug)
    app = App(config)
    asyncio.run(serve(app, config.retention_sweep_seconds))


if __name__ == "__main__":
    main()
