"""Command-line entry point: ``python -m parley``."""

from __future__ import annotations

import argparse
import asyncio

from parley.app import ParleyApp
from parley.models.config import LoggingConfig, ParleyConfig


async def _serve(config: ParleyConfig) -> None:
    app = await ParleyApp.create(config)
    app.install_signal_handlers()
    try:
        await app.run()
    finally:
        await app.close()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="parley",
        description="Telegram assistant that analyzes forwarded conversations.",
    )
    parser.add_argument("--env-file", help="Path to a .env file (default: ./.env if present)")
    parser.add_argument("--db-path", help="Override PARLEY_DB_PATH")
    parser.add_argument("--log-level", help="Override LOG_LEVEL")
    args = parser.parse_args(argv)

    config = ParleyConfig.from_env(args.env_file)
    if args.db_path:
        config = config.model_copy(
            update={"store": config.store.model_copy(update={"db_path": args.db_path})}
        )
    if args.log_level:
        config = config.model_copy(
            update={
                "logging": LoggingConfig(
                    **{**config.logging.model_dump(), "level": args.log_level}
                )
            }
        )
    asyncio.run(_serve(config))


if __name__ == "__main__":
    main()
