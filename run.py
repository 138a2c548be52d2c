import argparse
import asyncio
import logging
import signal

from prometheus_client import start_http_server

from src.config.settings import load_topology_config
from src.service import FailoverControlPlane

logger = logging.getLogger(__name__)


async def serve(args) -> None:
    config = load_topology_config(args.env_file)
    logging.getLogger().setLevel(config.log_level)

    if config.metrics_enabled:
        start_http_server(config.metrics_port)
        logger.info(f"Prometheus metrics exposed on port {config.metrics_port}")

    plane = FailoverControlPlane(config, store_backend=args.store_backend)
    if args.publish_dns:
        await plane.publish_dns()

    stop = asyncio.Event()
    loop = asyncio.get_event_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await plane.start()
    try:
        await stop.wait()
    finally:
        await plane.stop()


def main():
    parser = argparse.ArgumentParser(description="Active-active regional failover control plane")
    parser.add_argument('--env-file', default=None, help="Optional .env file with topology settings")
    parser.add_argument('--store-backend', choices=['memory', 's3'], default='memory')
    parser.add_argument('--publish-dns', action='store_true',
                        help="UPSERT the failover record pair to Route 53 before serving")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    asyncio.run(serve(args))


if __name__ == '__main__':
    main()
