"""Protean Engine runner for the payments domain.

Starts the Engine worker that processes events asynchronously:
- OutboxProcessor: polls outbox table, publishes events to Redis Streams
- StreamSubscriptions: reads Redis Streams, invokes settlement handlers,
  the order notifier and projectors

Usage:
    PROTEAN_ENV=production python src/server.py
"""

import argparse
import asyncio

from protean.server.engine import Engine

from payments.utils.logging import configure_logging


def _get_domain():
    from payments.domain import payments

    payments.init()
    return payments


async def run(test_mode: bool = False):
    engine = Engine(_get_domain(), test_mode=test_mode)
    await engine.run()


def main():
    parser = argparse.ArgumentParser(description="Bakery payments Engine runner")
    parser.add_argument(
        "--test-mode",
        action="store_true",
        help="Drain pending messages once and exit",
    )
    args = parser.parse_args()

    configure_logging()
    asyncio.run(run(args.test_mode))


if __name__ == "__main__":
    main()
