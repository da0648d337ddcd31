import asyncio
import argparse
import logging
from dataclasses import replace

import uvicorn

from api.rest import create_app
from core.config import get_settings


async def main():
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Tool Runner")
    parser.add_argument("--host", default="0.0.0.0", help="Bind address")
    parser.add_argument("--port", type=int, default=8000, help="REST API port")
    parser.add_argument("--mode", choices=["inline", "sandbox", "docker"], default=settings.executor_mode,
                        help="Default executor mode")
    parser.add_argument("--timeout-ms", type=int, default=settings.execution_timeout_ms,
                        help="Default execution timeout in milliseconds")
    parser.add_argument("--memory-mb", type=int, default=settings.sandbox_memory_mb,
                        help="Memory ceiling for sandbox and docker executors")
    parser.add_argument("--log-level", default=settings.log_level, help="Logging level")
    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    settings = replace(
        settings,
        executor_mode=args.mode,
        execution_timeout_ms=args.timeout_ms,
        sandbox_memory_mb=args.memory_mb,
    )
    app = create_app(settings)

    config = uvicorn.Config(app, host=args.host, port=args.port, log_level=args.log_level.lower())
    server = uvicorn.Server(config)
    print(f"REST API started on port {args.port} (executor mode: {settings.executor_mode})")
    try:
        await server.serve()
    except KeyboardInterrupt:
        print("Shutting down server...")


def cli():
    asyncio.run(main())


if __name__ == "__main__":
    cli()
