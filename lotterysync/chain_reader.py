from __future__ import annotations

import asyncio
import datetime as dt
import json
import logging
import pathlib
from decimal import Decimal
from typing import Any, Callable, Dict, Optional, Sequence

from web3 import Web3

from .config import ChainSettings
from .errors import ChainReadError
from .types import ZERO_ADDRESS, ZERO_TX_HASH, LotteryDraw, LotteryTicket, SeriesInfo

# Chain-sourced draws get ids in a separate range from the backend mirror's ids.
CHAIN_ID_OFFSET = 100
DEFAULT_DRAW_LENGTH = dt.timedelta(days=7)

_MISSING = object()


def format_ether(wei: Any) -> str:
    """Convert a base-unit integer into an ether decimal string ("0.01", "2")."""
    value = Web3.from_wei(int(wei), "ether")
    if not isinstance(value, Decimal):
        value = Decimal(value)
    if value == 0:
        return "0"
    return format(value.normalize(), "f")


def _utcnow() -> dt.datetime:
    return dt.datetime.now(tz=dt.timezone.utc)


class ChainReader:
    """Read-only adapter over the lottery contract's view functions.

    Every call runs the blocking web3 request in a worker thread. Field reads
    inside a draw snapshot degrade to defaults with a warning; reads whose
    result the caller cannot do without raise :class:`ChainReadError`.
    """

    def __init__(
        self,
        contract: Any,
        logger: Optional[logging.Logger] = None,
        now: Callable[[], dt.datetime] = _utcnow,
    ) -> None:
        self._contract = contract
        self._logger = logger or logging.getLogger("lotterysync.chain")
        self._now = now

    @classmethod
    def from_settings(cls, settings: ChainSettings, logger: Optional[logging.Logger] = None) -> "ChainReader":
        from web3.middleware import ExtraDataToPOAMiddleware

        if not settings.rpc_url:
            raise ValueError("RPC url is not configured")
        abi = cls._load_abi(settings.abi_path)

        web3 = Web3(Web3.HTTPProvider(settings.rpc_url))
        if not web3.is_connected():
            raise ConnectionError(f"Cannot connect to RPC endpoint: {settings.rpc_url}")

        # PoA networks (Sepolia forks, Hardhat, Polygon) put extra data in the header.
        web3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)

        contract = web3.eth.contract(address=Web3.to_checksum_address(settings.contract_address), abi=abi)
        return cls(contract, logger=logger)

    @staticmethod
    def _load_abi(path: str) -> Sequence[Dict[str, Any]]:
        artifact_path = pathlib.Path(path)
        if not artifact_path.exists():
            raise FileNotFoundError(f"Contract artifact not found: {artifact_path}")
        with artifact_path.open("r", encoding="utf-8") as fh:
            artifact = json.load(fh)
        abi = artifact.get("abi") if isinstance(artifact, dict) else artifact
        if not isinstance(abi, list):
            raise ValueError("Invalid artifact file: missing ABI")
        return abi

    async def _call(self, function: str, *args: Any) -> Any:
        def call():
            return getattr(self._contract.functions, function)(*args).call()

        try:
            return await asyncio.to_thread(call)
        except Exception as exc:
            raise ChainReadError(function, args, exc) from exc

    async def _soft_call(self, function: str, *args: Any) -> Any:
        try:
            return await self._call(function, *args)
        except ChainReadError as exc:
            self._logger.warning("Could not read %s: %s", function, exc.cause)
            return _MISSING

    # ------------------------------------------------------------------ #
    # Series
    # ------------------------------------------------------------------ #

    async def get_series_count(self) -> int:
        return int(await self._call("getTotalSeries"))

    async def get_series_info(self, index: int) -> SeriesInfo:
        name, draw_ids = await asyncio.gather(
            self._soft_call("getSeriesNameByIndex", int(index)),
            self._call("getSeriesDrawIdsByIndex", int(index)),
        )
        if name is _MISSING:
            name = f"Series #{index}"
        return SeriesInfo(index=int(index), name=str(name), draw_ids=tuple(int(x) for x in draw_ids))

    # ------------------------------------------------------------------ #
    # Draws
    # ------------------------------------------------------------------ #

    async def get_draw_snapshot(self, series_index: int, draw_id: int) -> LotteryDraw:
        draw_id = int(draw_id)
        name, completed, start_raw, end_raw, jackpot_raw, price_raw, count_raw = await asyncio.gather(
            self._soft_call("getSeriesNameByIndex", int(series_index)),
            self._soft_call("getCompleted", draw_id),
            self._soft_call("getDrawStartTime", draw_id),
            self._soft_call("getEstimatedEndTime", draw_id),
            self._soft_call("getJackpot", draw_id),
            self._soft_call("getTicketPrice", draw_id),
            self._soft_call("getTotalTicketsSold", draw_id),
        )
        fields = (completed, start_raw, end_raw, jackpot_raw, price_raw, count_raw)
        if all(value is _MISSING for value in fields):
            raise ChainReadError("getDrawSnapshot", (series_index, draw_id))

        series_name = f"Series #{series_index}" if name is _MISSING else str(name)
        is_completed = False if completed is _MISSING else bool(completed)

        if end_raw is _MISSING:
            now = self._now()
            end_time = now - dt.timedelta(days=1) if is_completed else now + DEFAULT_DRAW_LENGTH
        else:
            end_time = dt.datetime.fromtimestamp(int(end_raw), tz=dt.timezone.utc)
        if start_raw is _MISSING:
            start_time = end_time - DEFAULT_DRAW_LENGTH
        else:
            start_time = dt.datetime.fromtimestamp(int(start_raw), tz=dt.timezone.utc)

        jackpot_amount = "0" if jackpot_raw is _MISSING else format_ether(jackpot_raw)
        ticket_price = "0" if price_raw is _MISSING else format_ether(price_raw)
        participant_count = 0 if count_raw is _MISSING else int(count_raw)

        winning_numbers: tuple = ()
        winner_address = ZERO_ADDRESS
        if is_completed:
            numbers_raw, winner_raw = await asyncio.gather(
                self._soft_call("getWinningNumbers", draw_id),
                self._soft_call("getWinner", draw_id),
            )
            if numbers_raw is not _MISSING:
                winning_numbers = tuple(int(x) for x in numbers_raw)
            if winner_raw is not _MISSING:
                winner_address = self._first_address(winner_raw)

        return LotteryDraw(
            id=CHAIN_ID_OFFSET + draw_id,
            draw_id=draw_id,
            series_index=int(series_index),
            series_name=series_name,
            start_time=start_time,
            end_time=end_time,
            is_completed=is_completed,
            jackpot_amount=jackpot_amount,
            ticket_price=ticket_price,
            participant_count=participant_count,
            winning_numbers=winning_numbers,
            winner_address=winner_address,
            prize_amount=jackpot_amount,
            transaction_hash=ZERO_TX_HASH,
        )

    @staticmethod
    def _first_address(raw: Any) -> str:
        if isinstance(raw, str):
            return raw or ZERO_ADDRESS
        if isinstance(raw, (list, tuple)) and raw:
            return str(raw[0]) or ZERO_ADDRESS
        return ZERO_ADDRESS

    # ------------------------------------------------------------------ #
    # Tickets
    # ------------------------------------------------------------------ #

    async def get_ticket_count(self, draw_id: int) -> int:
        return int(await self._call("getTotalTicketsSold", int(draw_id)))

    async def get_ticket(self, draw_id: int, index: int, series_index: int = 0) -> LotteryTicket:
        # getTicketDetails returns (buyer, numbers, lottoNumber, timestamp)
        buyer, numbers, lotto_number, timestamp = await self._call(
            "getTicketDetails", int(draw_id), int(index)
        )
        return LotteryTicket(
            ticket_id=f"{draw_id}-{index}",
            wallet_address=str(buyer),
            numbers=tuple(int(n) for n in numbers),
            lotto_number=int(lotto_number),
            timestamp=int(timestamp) * 1000,
            draw_id=int(draw_id),
            series_index=int(series_index),
        )

    async def get_user_ticket_count(self, user: str, draw_id: int) -> int:
        return int(await self._call("getUserTicketsCount", Web3.to_checksum_address(user), int(draw_id)))

    async def get_user_ticket(self, user: str, draw_id: int, index: int, series_index: int = 0) -> LotteryTicket:
        # getUserTicketDetails returns (numbers, lottoNumber, timestamp)
        numbers, lotto_number, timestamp = await self._call(
            "getUserTicketDetails", Web3.to_checksum_address(user), int(draw_id), int(index)
        )
        return LotteryTicket(
            ticket_id=f"{draw_id}-{user}-{index}",
            wallet_address=user,
            numbers=tuple(int(n) for n in numbers),
            lotto_number=int(lotto_number),
            timestamp=int(timestamp) * 1000,
            draw_id=int(draw_id),
            series_index=int(series_index),
        )
