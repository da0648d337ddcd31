import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
import asyncio
import argparse
import logging

import yaml

from core.config import get_settings
from core.db import init_engine, init_models, get_engine
from executor_client import ExecutorClient
from health_check import HealthCheckService, ToolCheckTarget


def load_targets(yaml_path):
    """tools.yaml 형식:

    tools:
      - packageName: "@tpmjs/hello"
        exportName: helloWorldTool
        version: 0.0.2
        parameters:
          - {name: includeTimestamp, type: boolean, required: false}
    """
    with open(yaml_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    entries = data.get("tools", []) if isinstance(data, dict) else data
    return [ToolCheckTarget(**entry) for entry in entries]


async def run(args):
    settings = get_settings()
    targets = load_targets(args.manifest)
    session_factory = init_engine(settings.database_url)
    await init_models()

    client = ExecutorClient(
        default_url=args.executor_url or settings.default_executor_url,
        default_api_key=settings.executor_api_key,
        production=settings.is_production,
    )
    try:
        service = HealthCheckService(client, session_factory)
        summary = await service.check_batch(targets, batch_size=args.batch_size)
    finally:
        await client.aclose()
        await get_engine().dispose()
    print(f"{args.manifest} → {summary}")
    return summary


def main():
    parser = argparse.ArgumentParser(description="Run health checks for the tools listed in a YAML manifest")
    parser.add_argument("manifest", nargs="?", default="tools.yaml")
    parser.add_argument("--executor-url", default=None)
    parser.add_argument("--batch-size", type=int, default=5)
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    summary = asyncio.run(run(args))
    sys.exit(1 if summary["broken"] or summary["errors"] else 0)


if __name__ == "__main__":
    main()
