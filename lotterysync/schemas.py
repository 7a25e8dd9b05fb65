from __future__ import annotations

import datetime as dt
import time
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from .types import ZERO_ADDRESS, ZERO_TX_HASH, LotteryDraw, LotteryTicket

Amount = Union[str, int, float]

_DRAW_NULL_DEFAULTS = {"id": 0, "series_name": "", "is_completed": False, "participant_count": 0}
_TICKET_NULL_DEFAULTS = {"wallet_address": "", "numbers": (), "lotto_number": 0}


def _amount_str(value: Optional[Amount]) -> str:
    if value is None or value == "":
        return "0"
    return str(value)


class ApiDrawPayload(BaseModel):
    """Draw as served by ``GET /api/lottery/series/:seriesIndex/draws/:drawId``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: int = 0
    draw_id: Optional[int] = Field(None, alias="drawId")
    round_number: Optional[int] = Field(None, alias="roundNumber")
    series_index: Optional[int] = Field(None, alias="seriesIndex")
    series_name: str = Field("", alias="seriesName")
    start_time: Optional[dt.datetime] = Field(None, alias="startTime")
    end_time: Optional[dt.datetime] = Field(None, alias="endTime")
    is_completed: bool = Field(False, alias="isCompleted")
    pool_amount: Optional[Amount] = Field(None, alias="poolAmount")
    jackpot_amount: Optional[Amount] = Field(None, alias="jackpotAmount")
    ticket_price: Optional[Amount] = Field(None, alias="ticketPrice")
    participant_count: int = Field(0, alias="participantCount")
    winning_numbers: Optional[List[int]] = Field(None, alias="winningNumbers")
    winner_address: Optional[str] = Field(None, alias="winnerAddress")
    prize_amount: Optional[Amount] = Field(None, alias="prizeAmount")
    transaction_hash: Optional[str] = Field(None, alias="transactionHash")

    @field_validator(*_DRAW_NULL_DEFAULTS, mode="before")
    @classmethod
    def _null_to_default(cls, value: Any, info: ValidationInfo) -> Any:
        return _DRAW_NULL_DEFAULTS[info.field_name] if value is None else value

    def to_entity(self, series_index: int, draw_id: int, now: Optional[dt.datetime] = None) -> LotteryDraw:
        now = now or dt.datetime.now(tz=dt.timezone.utc)
        return LotteryDraw(
            id=self.id,
            draw_id=self.draw_id or self.round_number or draw_id,
            series_index=self.series_index if self.series_index is not None else series_index,
            series_name=self.series_name,
            start_time=_aware(self.start_time) or now,
            end_time=_aware(self.end_time) or now,
            is_completed=self.is_completed,
            jackpot_amount=_amount_str(self.pool_amount or self.jackpot_amount),
            ticket_price=_amount_str(self.ticket_price),
            participant_count=self.participant_count,
            winning_numbers=tuple(self.winning_numbers or ()),
            winner_address=self.winner_address or ZERO_ADDRESS,
            prize_amount=_amount_str(self.prize_amount),
            transaction_hash=self.transaction_hash or ZERO_TX_HASH,
        )


class ApiParticipantPayload(BaseModel):
    """Entry of ``GET /api/lottery/:drawId/participants``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[Union[int, str]] = None
    ticket_id: Optional[Union[str, int]] = Field(None, alias="ticketId")
    wallet_address: str = Field("", alias="walletAddress")
    numbers: List[int] = Field(default_factory=list)
    lotto_number: int = Field(0, alias="lottoNumber")
    timestamp: Optional[int] = None
    draw_id: Optional[int] = Field(None, alias="drawId")
    series_index: Optional[int] = Field(None, alias="seriesIndex")
    is_winner: Optional[bool] = Field(None, alias="isWinner")

    @field_validator(*_TICKET_NULL_DEFAULTS, mode="before")
    @classmethod
    def _null_to_default(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            default = _TICKET_NULL_DEFAULTS[info.field_name]
            return list(default) if isinstance(default, tuple) else default
        return value

    def to_entity(self, series_index: int, draw_id: int) -> LotteryTicket:
        return LotteryTicket(
            ticket_id=str(self.ticket_id) if self.ticket_id else f"{draw_id}-{self.id}",
            wallet_address=self.wallet_address,
            numbers=tuple(self.numbers),
            lotto_number=self.lotto_number,
            timestamp=self.timestamp if self.timestamp is not None else int(time.time() * 1000),
            draw_id=self.draw_id or draw_id,
            series_index=self.series_index if self.series_index is not None else series_index,
            is_winner=self.is_winner,
        )


def _aware(value: Optional[dt.datetime]) -> Optional[dt.datetime]:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=dt.timezone.utc)
