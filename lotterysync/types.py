from __future__ import annotations

import datetime as dt
import math
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Dict, Generic, Mapping, Optional, Sequence, Tuple, TypeVar

T = TypeVar("T")

ZERO_ADDRESS = "0x" + "0" * 40
ZERO_TX_HASH = "0x" + "0" * 64


def _parse_datetime(raw: Any) -> dt.datetime:
    if isinstance(raw, dt.datetime):
        return raw if raw.tzinfo else raw.replace(tzinfo=dt.timezone.utc)
    if isinstance(raw, (int, float)):
        return dt.datetime.fromtimestamp(raw, tz=dt.timezone.utc)
    if isinstance(raw, str):
        parsed = dt.datetime.fromisoformat(raw.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=dt.timezone.utc)
    raise ValueError(f"Unrecognised datetime value: {raw!r}")


@dataclass(frozen=True)
class SeriesInfo:
    index: int
    name: str
    draw_ids: Tuple[int, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {"index": self.index, "name": self.name, "draw_ids": list(self.draw_ids)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SeriesInfo":
        return cls(
            index=int(data["index"]),
            name=str(data.get("name", "")),
            draw_ids=tuple(int(x) for x in data.get("draw_ids", ())),
        )


@dataclass(frozen=True)
class LotteryDraw:
    """A single round of a series as seen by the client.

    Amounts are ether decimal strings; times are timezone-aware UTC datetimes.
    Once ``is_completed`` is true the winning numbers and winner never change.
    """

    id: int
    draw_id: int
    series_index: int
    series_name: str
    start_time: dt.datetime
    end_time: dt.datetime
    is_completed: bool
    jackpot_amount: str
    ticket_price: str
    participant_count: int
    winning_numbers: Tuple[int, ...] = ()
    winner_address: str = ZERO_ADDRESS
    prize_amount: str = "0"
    transaction_hash: str = ZERO_TX_HASH

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["start_time"] = self.start_time.isoformat()
        payload["end_time"] = self.end_time.isoformat()
        payload["winning_numbers"] = list(self.winning_numbers)
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LotteryDraw":
        return cls(
            id=int(data["id"]),
            draw_id=int(data["draw_id"]),
            series_index=int(data["series_index"]),
            series_name=str(data.get("series_name", "")),
            start_time=_parse_datetime(data["start_time"]),
            end_time=_parse_datetime(data["end_time"]),
            is_completed=bool(data.get("is_completed", False)),
            jackpot_amount=str(data.get("jackpot_amount", "0")),
            ticket_price=str(data.get("ticket_price", "0")),
            participant_count=int(data.get("participant_count", 0)),
            winning_numbers=tuple(int(x) for x in data.get("winning_numbers", ())),
            winner_address=str(data.get("winner_address") or ZERO_ADDRESS),
            prize_amount=str(data.get("prize_amount", "0")),
            transaction_hash=str(data.get("transaction_hash") or ZERO_TX_HASH),
        )


@dataclass(frozen=True)
class LotteryTicket:
    """One purchased entry: five main numbers plus the LOTTO number."""

    ticket_id: str
    wallet_address: str
    numbers: Tuple[int, ...]
    lotto_number: int
    timestamp: int  # milliseconds since epoch
    draw_id: int
    series_index: int
    is_winner: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["numbers"] = list(self.numbers)
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LotteryTicket":
        is_winner = data.get("is_winner")
        return cls(
            ticket_id=str(data["ticket_id"]),
            wallet_address=str(data.get("wallet_address", "")),
            numbers=tuple(int(x) for x in data.get("numbers", ())),
            lotto_number=int(data.get("lotto_number", 0)),
            timestamp=int(data.get("timestamp", 0)),
            draw_id=int(data["draw_id"]),
            series_index=int(data.get("series_index", 0)),
            is_winner=None if is_winner is None else bool(is_winner),
        )


@dataclass(frozen=True)
class PaginationOptions:
    page: int
    page_size: int
    total_items: int
    total_pages: int

    @classmethod
    def build(cls, page: int, page_size: int, total_items: int) -> "PaginationOptions":
        total_pages = math.ceil(total_items / page_size) if page_size > 0 else 0
        return cls(page=page, page_size=page_size, total_items=total_items, total_pages=total_pages)


RetryCallable = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class ErrorState:
    message: str
    code: Optional[str] = None
    retry: Optional[RetryCallable] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class SettledResult(Generic[T]):
    status: str  # "fulfilled" | "rejected"
    value: Optional[T] = None
    reason: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.status == "fulfilled"


@dataclass(frozen=True)
class FetchView(Generic[T]):
    """Data, loading flag and error recorded under one key."""

    data: Optional[T]
    is_loading: bool
    error: Optional[ErrorState]


@dataclass(frozen=True)
class Page(Generic[T]):
    items: Sequence[T]
    page: int
    page_size: int
    total_items: int
    total_pages: int

    @property
    def pagination(self) -> PaginationOptions:
        return PaginationOptions(
            page=self.page,
            page_size=self.page_size,
            total_items=self.total_items,
            total_pages=self.total_pages,
        )


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    expires_at: float
    stored_at: float = 0.0

    def is_live(self, now: float) -> bool:
        return self.expires_at > now
