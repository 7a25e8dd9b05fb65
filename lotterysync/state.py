"""Keyed state consumed by views: data, loading flags, errors and pagination.

Every map is replaced wholesale on update and exposed read-only, so a snapshot
handed to a consumer never changes underneath it.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from decimal import Decimal, InvalidOperation
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence

from .types import ErrorState, FetchView, LotteryDraw, PaginationOptions, RetryCallable, SeriesInfo

Subscriber = Callable[[str, str], None]


def format_eth_value(value: Any) -> str:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return "0"
    if not amount.is_finite():
        return "0"
    return f"{amount:.4f}"


class SyncState:
    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._data: Dict[str, Any] = {}
        self._loading: Dict[str, bool] = {}
        self._errors: Dict[str, ErrorState] = {}
        self._pagination: Dict[str, PaginationOptions] = {}
        self._series: List[SeriesInfo] = []
        self._draws: Dict[int, List[LotteryDraw]] = {}
        self._subscribers: List[Subscriber] = []
        self.selected_series_index: Optional[int] = None
        self.selected_draw_id: Optional[int] = None
        self._logger = logger or logging.getLogger("lotterysync.state")

    # ------------------------------------------------------------------ #
    # Read-only snapshots
    # ------------------------------------------------------------------ #

    @property
    def series_list(self) -> Sequence[SeriesInfo]:
        return tuple(self._series)

    @property
    def draws(self) -> Mapping[int, Sequence[LotteryDraw]]:
        return MappingProxyType({k: tuple(v) for k, v in self._draws.items()})

    @property
    def data(self) -> Mapping[str, Any]:
        return MappingProxyType(self._data)

    @property
    def loading(self) -> Mapping[str, bool]:
        return MappingProxyType(self._loading)

    @property
    def errors(self) -> Mapping[str, ErrorState]:
        return MappingProxyType(self._errors)

    @property
    def pagination(self) -> Mapping[str, PaginationOptions]:
        return MappingProxyType(self._pagination)

    def is_loading(self, key: str) -> bool:
        return self._loading.get(key, False)

    def error(self, key: str) -> Optional[ErrorState]:
        return self._errors.get(key)

    def view(self, key: str) -> FetchView:
        return FetchView(data=self._data.get(key), is_loading=self.is_loading(key), error=self._errors.get(key))

    # ------------------------------------------------------------------ #
    # Writers
    # ------------------------------------------------------------------ #

    def set_loading(self, key: str, value: bool) -> None:
        self._loading = {**self._loading, key: value}
        self._notify("loading", key)

    @contextmanager
    def loading_flag(self, key: str) -> Iterator[None]:
        """Hold the loading flag for ``key`` for the duration of the block."""
        self.set_loading(key, True)
        try:
            yield
        finally:
            self.set_loading(key, False)

    def set_error(
        self,
        key: str,
        message: str,
        code: Optional[str] = None,
        retry: Optional[RetryCallable] = None,
    ) -> ErrorState:
        state = ErrorState(message=message, code=code, retry=retry)
        self._errors = {**self._errors, key: state}
        self._notify("errors", key)
        return state

    def clear_error(self, key: str) -> None:
        if key not in self._errors:
            return
        self._errors = {k: v for k, v in self._errors.items() if k != key}
        self._notify("errors", key)

    async def retry(self, key: str) -> Any:
        state = self._errors.get(key)
        if state is None or state.retry is None:
            return None
        return await state.retry()

    def set_pagination(self, key: str, options: PaginationOptions) -> None:
        self._pagination = {**self._pagination, key: options}
        self._notify("pagination", key)

    def publish(self, key: str, value: Any) -> None:
        self._data = {**self._data, key: value}
        self._notify("data", key)

    def publish_series(self, series: Sequence[SeriesInfo]) -> None:
        self._series = list(series)
        self._notify("series", "series")

    def publish_draw(self, draw: LotteryDraw) -> None:
        siblings = [d for d in self._draws.get(draw.series_index, []) if d.draw_id != draw.draw_id]
        self._draws = {**self._draws, draw.series_index: siblings + [draw]}
        self._notify("draws", str(draw.series_index))

    def select(self, series_index: Optional[int] = None, draw_id: Optional[int] = None) -> None:
        self.selected_series_index = series_index
        self.selected_draw_id = draw_id
        self._notify("selection", f"{series_index}_{draw_id}")

    # ------------------------------------------------------------------ #
    # Subscribers
    # ------------------------------------------------------------------ #

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers = self._subscribers + [callback]

        def unsubscribe() -> None:
            self._subscribers = [s for s in self._subscribers if s is not callback]

        return unsubscribe

    def _notify(self, section: str, key: str) -> None:
        for callback in self._subscribers:
            try:
                callback(section, key)
            except Exception:
                self._logger.exception("State subscriber failed for %s[%s]", section, key)
