"""Command line tool for running and inspecting kyma-inventory controllers."""

import argparse
import asyncio
import logging
import sys
import traceback
from typing import Any

from kyma_inventory.exceptions import InventoryException
from kyma_inventory.task import task_service_context
from . import render, run

_LOGGER = logging.getLogger(__name__)


def _make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Command line utility for reconciling Kyma component inventories.",
    )
    parser.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    )

    subparsers = parser.add_subparsers(dest="command", help="Command", required=True)

    run.RunAction.register(subparsers)
    render.RenderAction.register(subparsers)
    return parser


async def _run_action(action: Any, args: argparse.Namespace) -> None:
    with task_service_context():
        await action.run(**vars(args))


def main(argv: list[str] | None = None) -> None:
    """kyma-inventory command line tool main entry point."""
    parser = _make_parser()
    args = parser.parse_args(argv)

    if args.log_level:
        logging.basicConfig(level=args.log_level)

    action = args.cls()
    try:
        asyncio.run(_run_action(action, args))
    except InventoryException as err:
        if args.log_level == "DEBUG":
            traceback.print_exc(file=sys.stderr)
        print("kyma-inventory error: ", err, file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
