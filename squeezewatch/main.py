"""SqueezeWatch — application entry point.

Boots the FastAPI internal status server and provides the CLI entry point
for the production and test run modes.
"""

import logging

from fastapi import FastAPI

from squeezewatch.api.routers import router

app = FastAPI(title="SqueezeWatch Internal API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("squeezewatch")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


@app.get("/health")
async def health():
    """Liveness check."""
    return {"status": "ok"}


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli(argv=None) -> int:
    """Parse CLI arguments and dispatch to the selected run mode.

    Returns the process exit code.
    """
    import argparse
    import asyncio

    from squeezewatch.config import load_config
    from squeezewatch.repos.db import init_db

    parser = argparse.ArgumentParser(description="SqueezeWatch market monitor")
    parser.add_argument(
        "mode",
        nargs="?",
        choices=["production", "test"],
        default="production",
        help="Run mode (default: production)",
    )
    parser.add_argument(
        "--no-api",
        action="store_true",
        help="Do not start the internal status API",
    )
    parser.add_argument("--env-file", help="Path to a .env file")
    args = parser.parse_args(argv)

    try:
        config = load_config(args.env_file)
    except ValueError as exc:
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
        logger.error("Configuration error: %s", exc)
        return 1

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )
    init_db(config.db_path)

    logger.info("Starting SqueezeWatch in %s mode", args.mode.upper())
    return asyncio.run(_run_app(config, args.mode, serve_api=not args.no_api))


async def _run_app(config, mode: str, serve_api: bool = True) -> int:
    """Run the monitor (and optionally the API server) until done."""
    import asyncio
    import signal

    import uvicorn

    from squeezewatch.api.routers import configure_routers
    from squeezewatch.monitor import MarketMonitor
    from squeezewatch.repos.signal_repo import SignalRepo
    from squeezewatch.runner import run_extended_test, run_production, start_monitor

    repo = SignalRepo(config.db_path)
    monitor = MarketMonitor(config, repo=repo)
    configure_routers(monitor=monitor, signal_repo=repo)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()

    def handle_shutdown(*_):
        logger.info("Shutdown signal received, stopping gracefully.")
        loop.call_soon_threadsafe(stop.set)

    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, handle_shutdown)
        except NotImplementedError:
            signal.signal(signum, handle_shutdown)

    server = None
    if serve_api:
        server = uvicorn.Server(uvicorn.Config(
            app,
            host="0.0.0.0",
            port=config.health_port,
            log_level="warning",
        ))

    async def _run_monitor() -> int:
        try:
            if not await start_monitor(monitor, stop):
                return 0 if stop.is_set() else 1
            if mode == "test":
                return await run_extended_test(
                    monitor, stop, config.test_duration_hours * 3600,
                )
            return await run_production(monitor, stop)
        finally:
            await monitor.stop()
            if server is not None:
                server.should_exit = True

    async def _run_server() -> None:
        await server.serve()
        stop.set()

    if server is None:
        return await _run_monitor()

    logger.info("Status API available at http://localhost:%d", config.health_port)
    exit_code, _ = await asyncio.gather(_run_monitor(), _run_server())
    logger.info("SqueezeWatch stopped (exit code %d)", exit_code)
    return exit_code


if __name__ == "__main__":
    raise SystemExit(_run_cli())
