"""Command line entry point.

Runs an Octofer app configured from the environment with a handler that
logs every ``ping`` delivery, which is enough to confirm a GitHub App's
webhook is wired up. Real apps build their own ``Octofer`` and register
handlers before calling ``start()``.
"""

import asyncio
import logging

from octofer.app import Octofer
from octofer.context import Context

logger = logging.getLogger(__name__)


async def log_ping(context: Context, extra) -> None:
    logger.info(
        "Received ping",
        extra={
            "delivery_id": context.delivery_id,
            "zen": context.payload.get("zen"),
            "hook_id": context.payload.get("hook_id"),
        },
    )


async def serve() -> None:
    app = Octofer.from_env()
    await app.on("ping", log_ping)
    await app.start()


def main() -> None:
    asyncio.run(serve())


if __name__ == "__main__":
    main()
