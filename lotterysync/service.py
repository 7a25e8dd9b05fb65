from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Optional

from .config import load_config
from .orchestrator import DataOrchestrator
from .state import format_eth_value
from .types import LotteryDraw

AMOUNT_FIELDS = ("jackpot_amount", "ticket_price", "prize_amount")


def configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stderr,
    )


def _jsonable(value: Any) -> Any:
    if isinstance(value, LotteryDraw):
        data = value.to_dict()
        for name in AMOUNT_FIELDS:
            data[name] = format_eth_value(data[name])
        return data
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


async def run(args: argparse.Namespace, orchestrator: Optional[DataOrchestrator] = None) -> Any:
    if orchestrator is None:
        settings = load_config(args.env_file)
        orchestrator = DataOrchestrator.from_settings(settings, wallet_address=getattr(args, "wallet", None))
    logger = logging.getLogger("lotterysync.service")

    if args.command == "series":
        result = await orchestrator.fetch_all_series(force_refresh=args.refresh)
        error_key = "series"
    elif args.command == "draws":
        result = await orchestrator.fetch_series_draws(
            args.series, page=args.page, page_size=args.page_size, force_refresh=args.refresh
        )
        error_key = f"series_draws_{args.series}"
    elif args.command == "draw":
        result = await orchestrator.fetch_draw_data(args.series, args.draw, force_refresh=args.refresh)
        error_key = f"draw_{args.series}_{args.draw}"
    elif args.command == "participants":
        result = await orchestrator.fetch_draw_participants(
            args.series, args.draw, page=args.page, page_size=args.page_size, force_refresh=args.refresh
        )
        error_key = f"participants_{args.series}_{args.draw}"
    elif args.command == "tickets":
        result = await orchestrator.fetch_user_tickets(
            args.wallet, series_index=args.series, draw_id=args.draw, force_refresh=args.refresh
        )
        error_key = "user_tickets"
    else:  # pragma: no cover - argparse restricts choices
        raise ValueError(f"Unknown command: {args.command}")

    error = orchestrator.state.error(error_key)
    if error is not None:
        logger.error("%s", error.message)
    return result


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Cache-first reader for on-chain lottery data")
    parser.add_argument("--env-file", type=str, default=None, help="Path to .env file with settings")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging (default INFO).")
    parser.add_argument("--refresh", action="store_true", help="Bypass the cache.")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("series", help="List every series.")

    draws = sub.add_parser("draws", help="List a page of draws in a series.")
    draws.add_argument("series", type=int)

    draw = sub.add_parser("draw", help="Show one draw.")
    draw.add_argument("series", type=int)
    draw.add_argument("draw", type=int)

    participants = sub.add_parser("participants", help="List a page of a draw's tickets.")
    participants.add_argument("series", type=int)
    participants.add_argument("draw", type=int)

    tickets = sub.add_parser("tickets", help="List a wallet's tickets.")
    tickets.add_argument("wallet", type=str)
    tickets.add_argument("--series", type=int, default=None)
    tickets.add_argument("--draw", type=int, default=None)

    for paged in (draws, participants):
        paged.add_argument("--page", type=int, default=1)
        paged.add_argument("--page-size", type=int, default=None)
    return parser


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def main(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    configure_logging(args.verbose)
    try:
        result = asyncio.run(run(args))
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)
        return
    print(json.dumps(_jsonable(result), indent=2, default=str))


if __name__ == "__main__":
    main()
