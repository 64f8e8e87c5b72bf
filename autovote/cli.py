"""autovote process launcher."""

import argparse
import json
import sys


def main(argv: list[str] | None = None):
    parser = argparse.ArgumentParser(prog="autovote", description="Adaptive challenge auto-voting scheduler")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Run the scheduler until interrupted")
    once_parser = subparsers.add_parser("once", help="Run one voting cycle and exit")
    manual_parser = subparsers.add_parser("manual", help="Vote every active challenge up to 100% and exit")

    for sub in (run_parser, once_parser, manual_parser):
        sub.add_argument("--verbose", action="store_true", help="Enable DEBUG logging")
        sub.add_argument("--quiet", action="store_true", help="Only show WARNING and above")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    _dispatch(args)


def _log_level(args) -> str:
    if args.verbose:
        return "DEBUG"
    if args.quiet:
        return "WARNING"
    return "INFO"


def _setup_logging(log_level: str):
    """Console logging, plus a rotating file when AUTOVOTE_LOG_DIR is set."""
    import logging
    import os
    from logging.handlers import RotatingFileHandler
    from pathlib import Path

    fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    logging.basicConfig(level=getattr(logging, log_level), format=fmt, datefmt=datefmt)

    log_dir = os.environ.get("AUTOVOTE_LOG_DIR")
    if log_dir:
        path = Path(log_dir).expanduser()
        path.mkdir(parents=True, exist_ok=True)
        # 5 MB, 3 backups
        fh = RotatingFileHandler(str(path / "autovote.log"), maxBytes=5 * 1024 * 1024, backupCount=3)
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
        logging.getLogger().addHandler(fh)


def _dispatch(args):
    import asyncio

    _setup_logging(_log_level(args))

    if args.command == "run":
        asyncio.run(_run())
    elif args.command == "once":
        summary = asyncio.run(_single(manual=False))
        print(json.dumps(summary, indent=2))
    elif args.command == "manual":
        summary = asyncio.run(_single(manual=True))
        print(json.dumps(summary, indent=2))
    else:
        print(f"Unknown command: {args.command}")
        sys.exit(1)


async def _build(config):
    """Wire store, resolver, engine, client and scheduler from config."""
    from autovote.engine.decision import DecisionEngine
    from autovote.hub.config import ConfigResolver
    from autovote.hub.config_store import ConfigStore
    from autovote.hub.core import VotingScheduler
    from autovote.modules.client import HttpChallengeClient, make_action_executor

    store = ConfigStore(str(config.paths.settings_db_path))
    await store.initialize()
    resolver = ConfigResolver(store, recent_window=config.run.recent_touch_window_s)
    await resolver.load()

    client = HttpChallengeClient(config.api)
    scheduler = VotingScheduler(
        resolver,
        DecisionEngine(resolver),
        client,
        make_action_executor(config, client),
        credential=config.api.token or None,
        action_delay_min_s=config.run.action_delay_min_s,
        action_delay_max_s=config.run.action_delay_max_s,
        debounce_seconds=config.run.config_debounce_s,
    )
    return store, resolver, client, scheduler


async def _single(manual: bool) -> dict:
    from autovote.engine.config import AppConfig

    store, _resolver, client, scheduler = await _build(AppConfig.from_env())
    try:
        if manual:
            return await scheduler.run_manual_cycle()
        return await scheduler.run_once()
    finally:
        await client.close()
        await store.close()


async def _run():
    import asyncio
    import logging
    import signal

    from autovote.engine.config import AppConfig
    from autovote.modules.config_watcher import ConfigWatcher

    logger = logging.getLogger("autovote.run")
    config = AppConfig.from_env()
    store, resolver, client, scheduler = await _build(config)
    watcher = ConfigWatcher(store, resolver, scheduler.notify_config_changed, config.run.config_poll_interval_s)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            pass  # Windows: fall back to KeyboardInterrupt

    try:
        await scheduler.start()
        watcher.start()
        logger.info(f"Running against {config.api.base_url} (data dir {config.paths.data_dir})")
        await stop_event.wait()
        logger.info("Shutting down")
    finally:
        await watcher.stop()
        await scheduler.stop()
        await client.close()
        await store.close()


if __name__ == "__main__":
    main()
