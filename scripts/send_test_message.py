#!/usr/bin/env python3
"""
Push test messages through the dispatch queue and print each outcome.

Uses the simulated providers, so results vary run to run unless --seed
is given.

Usage:
    python scripts/send_test_message.py
    python scripts/send_test_message.py --count 5 --to ops@example.com
    python scripts/send_test_message.py --count 10 --fast --seed 42
    python scripts/send_test_message.py --primary-rate 0 --fallback-rate 1

Output:
    Status: Success | Provider: primary | Attempts: 1
    Status: Failed | Provider: fallback | Attempts: 5 | Error: Failed to send message via fallback
"""
import argparse
import asyncio
import random
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from courier.config import DispatchConfig, settings  # noqa: E402
from courier.core.dispatch.domain import Message  # noqa: E402
from courier.core.dispatch.engine import DispatchEngine  # noqa: E402
from courier.core.dispatch.queue import DispatchQueue  # noqa: E402
from courier.infra.logging_config import setup_logging  # noqa: E402
from courier.infra.providers import SimulatedProvider  # noqa: E402


async def run(args: argparse.Namespace) -> int:
    rng = random.Random(args.seed) if args.seed is not None else None
    config = DispatchConfig.from_settings(settings)
    if args.fast:
        config = config.scaled(0.01)

    engine = DispatchEngine(
        SimulatedProvider(settings.primary_provider_name, args.primary_rate, rng=rng),
        SimulatedProvider(settings.fallback_provider_name, args.fallback_rate, rng=rng),
        config=config,
    )
    queue = DispatchQueue(engine)

    futures = [
        queue.enqueue(Message(
            destination=args.to,
            subject=f"{args.subject} #{i + 1}",
            body=args.body,
        ))
        for i in range(args.count)
    ]

    failed = rejected = 0
    for future in futures:
        outcome = await future
        print(outcome.summary())
        if not outcome.success:
            failed += 1
        if outcome.rejected:
            rejected += 1

    if failed:
        print(f"{failed}/{args.count} failed ({rejected} rejected by open circuit breaker)", file=sys.stderr)
    return 1 if failed else 0


def main():
    parser = argparse.ArgumentParser(
        description="Send test messages through the dispatch queue",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument("--to", default="user@example.com", help="Destination address")
    parser.add_argument("--subject", default="Test", help="Subject prefix")
    parser.add_argument("--body", default="This is a test message", help="Message body")
    parser.add_argument("--count", type=int, default=1, help="Number of messages to enqueue")
    parser.add_argument("--primary-rate", type=float, default=settings.primary_success_rate,
                        help="Primary provider success probability")
    parser.add_argument("--fallback-rate", type=float, default=settings.fallback_success_rate,
                        help="Fallback provider success probability")
    parser.add_argument("--seed", type=int, default=None, help="Seed for reproducible runs")
    parser.add_argument("--fast", action="store_true", help="Scale all delays down 100x")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show dispatch logs")

    args = parser.parse_args()
    if args.count < 1:
        parser.error("--count must be >= 1")

    setup_logging(level="DEBUG" if args.verbose else "WARNING")
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
