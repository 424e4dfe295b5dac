"""Tracking sync runner for orderflow.

Runs the supplier tracking reconciliation outside the web server, for
deployments that keep HTTP workers and the scheduler in separate processes.

Usage:
    python src/server.py          # Run the sync every TRACKING_SYNC_INTERVAL seconds
    python src/server.py --once   # Run a single sync pass and exit
"""

import argparse
import asyncio
import json
import signal

from orderflow.config import OrderflowSettings
from orderflow.domain import orderflow
from orderflow.services import build_services
from orderflow.utils.logging import configure_logging


async def run_forever(services) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)
    await services.scheduler.run_forever(orderflow, stop)


def main():
    parser = argparse.ArgumentParser(description="Orderflow tracking sync runner")
    parser.add_argument("--once", action="store_true", help="Run one sync pass and exit")
    args = parser.parse_args()

    settings = OrderflowSettings.from_env()
    configure_logging(settings)
    orderflow.init()

    with orderflow.domain_context():
        services = build_services(settings, orderflow)

    try:
        if args.once:
            with orderflow.domain_context():
                report = services.scheduler.run_once()
            print(json.dumps(report.as_dict()))
        else:
            asyncio.run(run_forever(services))
    finally:
        services.shutdown()


if __name__ == "__main__":
    main()
