"""
Command line entry point.

Loads settings and the policy document, wires the service with the stdin
adapter and serves until end of input. A bad policy document is the only
error that stops robit, with exit code 2.
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from robit.adapters.stdin import StdinAdapter
from robit.agent_core.errors import ConfigError
from robit.agent_core.factory import build_default_registry, build_engine, build_repos
from robit.agent_core.policy.loader import load_policy_config
from robit.agent_core.service import RobitService
from robit.core.config import RobitSettings
from robit.core.logging_config import setup_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="robit",
        description="Run planned file, shell and web actions with human approval.",
    )
    parser.add_argument("--config", help="Policy document path (overrides ROBIT_CONFIG_PATH)")
    parser.add_argument("--log-level", help="Console log level (overrides ROBIT_LOG_LEVEL)")
    parser.add_argument("--database-url", help="Async SQLAlchemy URL (overrides ROBIT_DATABASE_URL)")
    parser.add_argument(
        "--execute",
        action="store_true",
        help="Perform side effects; without it the policy's dry_run setting applies",
    )
    return parser


async def serve(settings: RobitSettings, *, execute: bool = False) -> None:
    policy = load_policy_config(settings)
    if execute and policy.dry_run:
        policy = policy.model_copy(update={"dry_run": False})
    logger.info(f"Policy loaded (dry_run={policy.dry_run}, strict={policy.strict})")

    sessions, events = await build_repos(settings.database_url)
    registry = build_default_registry(brave_api_key=settings.brave_api_key)
    engine = build_engine(policy_config=policy, registry=registry, sessions=sessions, events=events)
    service = RobitService(engine=engine)
    await service.start()
    # with a database the waiting sessions survive for the next start
    await service.run_with_adapter(StdinAdapter(prompt=settings.prompt), abandon_on_close=not settings.database_url)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = RobitSettings()
    overrides = {}
    if args.config:
        overrides["config_path"] = args.config
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.database_url:
        overrides["database_url"] = args.database_url
    if overrides:
        settings = settings.model_copy(update=overrides)

    setup_logging(log_level=settings.log_level, log_format=settings.log_format, enable_file=settings.enable_file_logging)
    try:
        asyncio.run(serve(settings, execute=args.execute))
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        print(f"robit: configuration error: {e}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
