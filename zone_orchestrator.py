#!/usr/bin/env python3
"""
Zone Orchestrator service
Runs the task queue workers against Redis and the local zone utilities
"""
import argparse
import asyncio
import copy
import logging
import os
import signal
import socket
from typing import Any, Dict

import yaml
from prometheus_client import start_http_server

from async_redis_reliable import AsyncReliableRedis
from errors import OrchestratorError
from handlers import HandlerContext
from task_queue import AsyncTaskQueue
from zone_commands import AsyncCommandExecutor
from zone_store import ZoneStore

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger('zone_orchestrator')

DEFAULT_CONFIG = {
    "host": None,
    "redis": {
        "host": "localhost",
        "port": 6379,
        "db": 0,
        "password": None,
        "key_prefix": "zones"
    },
    "commands": {
        "privilege_prefix": ["pfexec"],
        "timeout": None
    },
    "task_queue": {
        "workers": 1,
        "poll_interval": 1.0,
        "auto_discovery": True,
        "discovery_interval": 600,
        "task_retention_days": 30,
        "cleanup_interval": 86400,
        "restart_settle_seconds": 2,
        "shutdown_timeout": 30,
        "zonepath_mode": "700"
    },
    "metrics": {
        "port": 0
    },
    "logging": {
        "level": "INFO",
        "file": None
    }
}


def _merge(defaults: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(defaults)
    for key, value in (overrides or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class Config:
    """Configuration handler"""
    def __init__(self, config_file="config.yaml"):
        self.config_file = config_file
        self.config = self.load_config()

    def load_config(self):
        """Load configuration from YAML file, filling gaps from the defaults"""
        if os.path.exists(self.config_file):
            with open(self.config_file, 'r') as f:
                return _merge(DEFAULT_CONFIG, yaml.safe_load(f) or {})
        logger.info(f"No configuration file at {self.config_file}, using defaults")
        return copy.deepcopy(DEFAULT_CONFIG)

    @property
    def host(self) -> str:
        return self.config.get("host") or socket.gethostname()


def setup_logging(log_config: Dict[str, Any]):
    logging.getLogger().setLevel(getattr(logging, str(log_config.get("level", "INFO")).upper()))

    if log_config.get("file"):
        handler = logging.FileHandler(log_config["file"])
        handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))
        logging.getLogger().addHandler(handler)


def build_queue(config: Config, redis_client: AsyncReliableRedis) -> AsyncTaskQueue:
    """Wire executor, store and handler context into a task queue"""
    command_config = config.config["commands"]
    queue_config = config.config["task_queue"]

    executor = AsyncCommandExecutor(
        privilege_prefix=command_config.get("privilege_prefix"),
        timeout=command_config.get("timeout")
    )
    store = ZoneStore(redis_client, key_prefix=config.config["redis"].get("key_prefix", "zones"))
    context = HandlerContext(
        executor=executor,
        store=store,
        host=config.host,
        restart_settle_seconds=queue_config.get("restart_settle_seconds", 2),
        zonepath_mode=str(queue_config.get("zonepath_mode", "700"))
    )
    return AsyncTaskQueue(
        store,
        context,
        max_workers=queue_config.get("workers", 1),
        poll_interval=queue_config.get("poll_interval", 1.0),
        auto_discovery=queue_config.get("auto_discovery", True),
        discovery_interval=queue_config.get("discovery_interval", 600),
        shutdown_timeout=queue_config.get("shutdown_timeout", 30)
    )


async def cleanup_loop(task_queue: AsyncTaskQueue, retention_days: int, interval: float):
    while True:
        try:
            await task_queue.cleanup_old_tasks(retention_days)
        except OrchestratorError as e:
            logger.error(f"Task cleanup failed: {e}")
        await asyncio.sleep(interval)


async def main_async(config: Config):
    setup_logging(config.config["logging"])

    metrics_port = config.config["metrics"].get("port")
    if metrics_port:
        start_http_server(metrics_port)
        logger.info(f"Metrics exported on port {metrics_port}")

    redis_config = config.config["redis"]
    redis_client = AsyncReliableRedis(
        host=redis_config.get("host", "localhost"),
        port=redis_config.get("port", 6379),
        password=redis_config.get("password"),
        db=redis_config.get("db", 0),
        max_retries=5
    )
    await redis_client.connect()

    task_queue = build_queue(config, redis_client)
    queue_config = config.config["task_queue"]

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    await task_queue.start()
    cleaner = asyncio.create_task(cleanup_loop(
        task_queue,
        queue_config.get("task_retention_days", 30),
        queue_config.get("cleanup_interval", 86400)
    ))
    logger.info(f"Zone orchestrator running on host {config.host} "
                f"with {task_queue.max_workers} worker(s)")

    try:
        await stop_event.wait()
    finally:
        logger.info("Shutting down zone orchestrator")
        cleaner.cancel()
        await asyncio.gather(cleaner, return_exceptions=True)
        await task_queue.stop()
        await redis_client.close()


def main():
    """Main entry point"""
    parser = argparse.ArgumentParser(description='Zone orchestration task queue service')
    parser.add_argument('-c', '--config', default='config.yaml', help='Path to YAML configuration file')
    args = parser.parse_args()

    try:
        asyncio.run(main_async(Config(args.config)))
    except KeyboardInterrupt:
        logger.info("Shutdown requested")
    except OrchestratorError:
        logger.exception("Zone orchestrator failed")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
