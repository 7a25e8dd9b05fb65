from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar, Union

from .api_client import ApiFallbackClient
from .batch import fulfilled_values, run_batched
from .cache import (
    ALL_SERIES_KEY,
    CacheStore,
    TTLPolicy,
    draw_key,
    draw_ttl,
    participants_key,
    series_key,
    ttl_for,
    user_tickets_key,
)
from .chain_reader import ChainReader
from .config import SyncSettings
from .errors import LotterySyncError
from .pagination import change_page as shift_page
from .pagination import page_count, page_in_range, paginate
from .state import SyncState
from .types import LotteryDraw, LotteryTicket, SeriesInfo

V = TypeVar("V")
R = TypeVar("R")

SERIES_KEY = "series"
USER_TICKETS_KEY = "user_tickets"

_PARTICIPANTS_PAGE_KEY = re.compile(r"^(\d+)_(\d+)$")
_SERIES_DRAWS_PAGE_KEY = re.compile(r"^series_draws_(\d+)$")


def _aborted(abort: Optional[asyncio.Event]) -> bool:
    return abort is not None and abort.is_set()


class DataOrchestrator:
    """Resolves series, draws and tickets through cache, REST mirror and contract.

    No ``fetch_*`` coroutine raises: a request that every tier fails is
    recorded in :class:`SyncState` as an error carrying a retry closure, and an
    empty result is returned. Only task cancellation propagates.
    """

    def __init__(
        self,
        chain: ChainReader,
        api: Optional[ApiFallbackClient] = None,
        cache: Optional[CacheStore] = None,
        state: Optional[SyncState] = None,
        batch_size: int = 5,
        page_size: int = 10,
        wallet_address: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if batch_size < 1 or page_size < 1:
            raise ValueError("batch_size and page_size must be positive")
        self._chain = chain
        self._api = api
        self.cache = cache or CacheStore()
        self.state = state or SyncState()
        self._batch_size = batch_size
        self._page_size = page_size
        self.wallet_address = wallet_address
        self._logger = logger or logging.getLogger("lotterysync.orchestrator")

    @classmethod
    def from_settings(
        cls,
        settings: SyncSettings,
        wallet_address: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ) -> "DataOrchestrator":
        return cls(
            chain=ChainReader.from_settings(settings.chain),
            api=ApiFallbackClient(settings.api) if settings.api.enabled else None,
            cache=CacheStore.from_settings(settings.cache),
            batch_size=settings.batch_size,
            page_size=settings.page_size,
            wallet_address=wallet_address,
            logger=logger,
        )

    # ------------------------------------------------------------------ #
    # Generic fallback chain
    # ------------------------------------------------------------------ #

    async def resolve_with_fallback(
        self,
        key: str,
        cache_key: Optional[str],
        chain_attempt: Callable[[], Awaitable[V]],
        project: Callable[[V], R],
        empty: R,
        error_message: str,
        retry: Callable[[], Awaitable[Any]],
        ttl_for_value: Callable[[V], Union[TTLPolicy, float]] = lambda _: TTLPolicy.ACTIVE,
        api_attempt: Optional[Callable[[], Awaitable[Optional[V]]]] = None,
        force_refresh: bool = False,
        abort: Optional[asyncio.Event] = None,
    ) -> R:
        """Cache, then REST mirror, then contract; cache and project the first hit.

        ``project`` publishes the resolved value into state and shapes the
        return value. On exhaustion an error with ``retry`` is recorded under
        ``key`` and ``empty`` is returned.
        """
        with self.state.loading_flag(key):
            self.state.clear_error(key)
            if cache_key is not None and not force_refresh:
                cached = self.cache.get(cache_key)
                if cached is not None:
                    return project(cached)

            if _aborted(abort):
                self._logger.debug("Fetch %s aborted before network access", key)
                return empty

            value: Optional[V] = None
            if api_attempt is not None and self._api is not None:
                value = await api_attempt()
                if value is None:
                    self._logger.debug("API tier had no answer for %s; reading contract", key)

            if value is None:
                if _aborted(abort):
                    self._logger.debug("Fetch %s aborted before contract read", key)
                    return empty
                try:
                    value = await chain_attempt()
                except Exception as exc:
                    self._logger.error("%s: %s", error_message, exc)
                    self.state.set_error(key, error_message, code=type(exc).__name__, retry=retry)
                    return empty

            # Nested fetches may have bailed out; a partial result is never cached.
            if _aborted(abort):
                self._logger.debug("Fetch %s aborted; discarding result", key)
                return empty

            if cache_key is not None:
                self.cache.set(cache_key, value, ttl_for_value(value))
            return project(value)

    # ------------------------------------------------------------------ #
    # Series
    # ------------------------------------------------------------------ #

    async def fetch_all_series(
        self, force_refresh: bool = False, abort: Optional[asyncio.Event] = None
    ) -> List[SeriesInfo]:
        async def load() -> List[SeriesInfo]:
            count = await self._chain.get_series_count()
            tasks = [
                (lambda index=index: self.fetch_series_info(index, force_refresh=force_refresh, abort=abort))
                for index in range(count)
            ]
            results = await run_batched(tasks, self._batch_size)
            series: List[SeriesInfo] = []
            for index, result in enumerate(results):
                if result.ok and result.value is not None:
                    series.append(result.value)
                else:
                    self._logger.warning("Series %s omitted from listing: %s", index, result.reason)
            return series

        def project(series: List[SeriesInfo]) -> List[SeriesInfo]:
            series = list(series)
            self.state.publish_series(series)
            self.state.publish(SERIES_KEY, series)
            return series

        return await self.resolve_with_fallback(
            key=SERIES_KEY,
            cache_key=ALL_SERIES_KEY,
            chain_attempt=load,
            project=project,
            empty=[],
            error_message="Failed to fetch lottery series",
            retry=lambda: self.fetch_all_series(force_refresh=force_refresh),
            force_refresh=force_refresh,
            abort=abort,
        )

    async def fetch_series_info(
        self, index: int, force_refresh: bool = False, abort: Optional[asyncio.Event] = None
    ) -> Optional[SeriesInfo]:
        key = series_key(index)

        def project(info: SeriesInfo) -> SeriesInfo:
            self.state.publish(key, info)
            return info

        return await self.resolve_with_fallback(
            key=key,
            cache_key=key,
            chain_attempt=lambda: self._chain.get_series_info(index),
            project=project,
            empty=None,
            error_message=f"Failed to fetch series #{index}",
            retry=lambda: self.fetch_series_info(index, force_refresh=force_refresh),
            force_refresh=force_refresh,
            abort=abort,
        )

    async def fetch_series_draws(
        self,
        series_index: int,
        page: int = 1,
        page_size: Optional[int] = None,
        force_refresh: bool = False,
        abort: Optional[asyncio.Event] = None,
    ) -> List[LotteryDraw]:
        page_size = page_size or self._page_size
        key = f"series_draws_{series_index}"
        if self._page_rejected(key, page, page_size, force_refresh):
            self._logger.warning("Rejected draws page %s/%s for series %s", page, page_size, series_index)
            return []
        past_end = False

        async def load() -> List[LotteryDraw]:
            nonlocal past_end
            info = self._known_series(series_index)
            if info is None:
                info = await self.fetch_series_info(series_index, force_refresh=force_refresh, abort=abort)
            if info is None:
                raise LotterySyncError(f"series {series_index} is unavailable")
            window = paginate(info.draw_ids, page, page_size)
            if not page_in_range(page, window.total_pages):
                self._logger.warning(
                    "Draws page %s is past the last page %s of series %s", page, window.total_pages, series_index
                )
                past_end = True
                return []
            self.state.set_pagination(key, window.pagination)
            tasks = [
                (lambda draw_id=draw_id: self.fetch_draw_data(
                    series_index, draw_id, force_refresh=force_refresh, abort=abort
                ))
                for draw_id in window.items
            ]
            results = await run_batched(tasks, self._batch_size)
            return fulfilled_values(results)

        def project(draws: List[LotteryDraw]) -> List[LotteryDraw]:
            if not past_end:
                self.state.publish(key, draws)
            return draws

        return await self.resolve_with_fallback(
            key=key,
            cache_key=None,
            chain_attempt=load,
            project=project,
            empty=[],
            error_message=f"Failed to fetch draws for series #{series_index}",
            retry=lambda: self.fetch_series_draws(
                series_index, page=page, page_size=page_size, force_refresh=force_refresh
            ),
            force_refresh=force_refresh,
            abort=abort,
        )

    def _page_rejected(self, page_key: str, page: int, page_size: int, force_refresh: bool) -> bool:
        """Reject a page that is invalid or past the last known page, before any network access."""
        if page < 1 or page_size < 1:
            return True
        stored = self.state.pagination.get(page_key)
        if stored is None or force_refresh:
            return False
        return not page_in_range(page, page_count(stored.total_items, page_size))

    def _known_series(self, series_index: int) -> Optional[SeriesInfo]:
        for info in self.state.series_list:
            if info.index == series_index:
                return info
        return None

    # ------------------------------------------------------------------ #
    # Draws
    # ------------------------------------------------------------------ #

    async def fetch_draw_data(
        self,
        series_index: int,
        draw_id: int,
        force_refresh: bool = False,
        abort: Optional[asyncio.Event] = None,
    ) -> Optional[LotteryDraw]:
        key = draw_key(series_index, draw_id)

        def project(draw: LotteryDraw) -> LotteryDraw:
            self.state.publish_draw(draw)
            self.state.publish(key, draw)
            return draw

        api_attempt = None
        if self._api is not None:
            api_attempt = lambda: self._api.fetch_draw(series_index, draw_id)

        return await self.resolve_with_fallback(
            key=key,
            cache_key=key,
            chain_attempt=lambda: self._chain.get_draw_snapshot(series_index, draw_id),
            api_attempt=api_attempt,
            project=project,
            empty=None,
            ttl_for_value=draw_ttl,
            error_message=f"Failed to fetch draw #{draw_id} data",
            retry=lambda: self.fetch_draw_data(series_index, draw_id, force_refresh=force_refresh),
            force_refresh=force_refresh,
            abort=abort,
        )

    def _draw_is_completed(self, series_index: int, draw_id: int) -> bool:
        cached = self.cache.get(draw_key(series_index, draw_id))
        if isinstance(cached, LotteryDraw):
            return cached.is_completed
        for draw in self.state.draws.get(series_index, ()):
            if draw.draw_id == draw_id:
                return draw.is_completed
        return False

    # ------------------------------------------------------------------ #
    # Participants
    # ------------------------------------------------------------------ #

    async def fetch_draw_participants(
        self,
        series_index: int,
        draw_id: int,
        page: int = 1,
        page_size: Optional[int] = None,
        force_refresh: bool = False,
        abort: Optional[asyncio.Event] = None,
    ) -> List[LotteryTicket]:
        page_size = page_size or self._page_size
        key = participants_key(series_index, draw_id)
        page_key = f"{series_index}_{draw_id}"
        if self._page_rejected(page_key, page, page_size, force_refresh):
            self._logger.warning("Rejected participants page %s/%s for %s", page, page_size, page_key)
            return []

        async def load() -> List[LotteryTicket]:
            count = await self._chain.get_ticket_count(draw_id)
            if count == 0:
                self._logger.info("No tickets sold for draw %s", draw_id)
                return []
            tasks = [
                (lambda index=index: self._chain.get_ticket(draw_id, index, series_index=series_index))
                for index in range(count)
            ]
            results = await run_batched(tasks, self._batch_size)
            tickets = fulfilled_values(results)
            if len(tickets) < count:
                self._logger.warning(
                    "Draw %s: %d of %d tickets could not be read", draw_id, count - len(tickets), count
                )
            return tickets

        def project(tickets: List[LotteryTicket]) -> List[LotteryTicket]:
            window = paginate(tickets, page, page_size)
            if not page_in_range(page, window.total_pages):
                self._logger.warning(
                    "Participants page %s is past the last page %s of %s", page, window.total_pages, page_key
                )
                return []
            items = list(window.items)
            self.state.set_pagination(page_key, window.pagination)
            self.state.publish(key, items)
            return items

        api_attempt = None
        if self._api is not None:
            api_attempt = lambda: self._api.fetch_participants(series_index, draw_id)

        return await self.resolve_with_fallback(
            key=key,
            cache_key=key,
            chain_attempt=load,
            api_attempt=api_attempt,
            project=project,
            empty=[],
            ttl_for_value=lambda _: ttl_for(self._draw_is_completed(series_index, draw_id)),
            error_message=f"Failed to fetch participants for draw #{draw_id}",
            retry=lambda: self.fetch_draw_participants(
                series_index, draw_id, page=page, page_size=page_size, force_refresh=force_refresh
            ),
            force_refresh=force_refresh,
            abort=abort,
        )

    # ------------------------------------------------------------------ #
    # User tickets
    # ------------------------------------------------------------------ #

    async def fetch_user_tickets(
        self,
        wallet_address: Optional[str] = None,
        series_index: Optional[int] = None,
        draw_id: Optional[int] = None,
        force_refresh: bool = False,
        abort: Optional[asyncio.Event] = None,
    ) -> Dict[str, List[LotteryTicket]]:
        wallet = wallet_address or self.wallet_address
        if not wallet:
            self.state.set_error(USER_TICKETS_KEY, "Wallet not connected", code="NO_WALLET")
            return {}

        async def load() -> Dict[str, List[LotteryTicket]]:
            if series_index is not None and draw_id is not None:
                tickets = await self._user_tickets_for_draw(wallet, series_index, draw_id, force_refresh)
                return {f"{series_index}_{draw_id}": tickets} if tickets else {}

            series = list(self.state.series_list)
            if not series:
                series = await self.fetch_all_series(abort=abort)
            if not series and self.state.error(SERIES_KEY) is not None:
                raise LotterySyncError("series listing unavailable")

            pairs = [(info.index, did) for info in series for did in info.draw_ids]
            tasks = [
                (lambda s=s, d=d: self._user_tickets_for_draw(wallet, s, d, force_refresh))
                for s, d in pairs
            ]
            results = await run_batched(tasks, self._batch_size)
            found: Dict[str, List[LotteryTicket]] = {}
            for (s, d), result in zip(pairs, results):
                if not result.ok:
                    self._logger.warning("Could not read tickets of %s in draw %s/%s: %s", wallet, s, d, result.reason)
                elif result.value:
                    found[f"{s}_{d}"] = result.value
            return found

        def project(tickets: Dict[str, List[LotteryTicket]]) -> Dict[str, List[LotteryTicket]]:
            self.state.publish(USER_TICKETS_KEY, tickets)
            return tickets

        return await self.resolve_with_fallback(
            key=USER_TICKETS_KEY,
            cache_key=None,
            chain_attempt=load,
            project=project,
            empty={},
            error_message="Failed to fetch your tickets",
            retry=lambda: self.fetch_user_tickets(
                wallet, series_index=series_index, draw_id=draw_id, force_refresh=force_refresh
            ),
            force_refresh=force_refresh,
            abort=abort,
        )

    async def _user_tickets_for_draw(
        self, wallet: str, series_index: int, draw_id: int, force_refresh: bool
    ) -> List[LotteryTicket]:
        cache_key = user_tickets_key(wallet, series_index, draw_id)
        if not force_refresh:
            cached = self.cache.get(cache_key)
            if cached is not None:
                return cached

        count = await self._chain.get_user_ticket_count(wallet, draw_id)
        tickets: List[LotteryTicket] = []
        if count > 0:
            tasks = [
                (lambda index=index: self._chain.get_user_ticket(wallet, draw_id, index, series_index=series_index))
                for index in range(count)
            ]
            results = await run_batched(tasks, self._batch_size)
            for index, result in enumerate(results):
                if result.ok:
                    tickets.append(result.value)
                else:
                    self._logger.warning("Error fetching ticket %s of %s in draw %s: %s", index, wallet, draw_id, result.reason)

        self.cache.set(cache_key, tickets, ttl_for(self._draw_is_completed(series_index, draw_id)))
        return tickets

    # ------------------------------------------------------------------ #
    # Pagination & invalidation
    # ------------------------------------------------------------------ #

    async def change_page(self, key: str, page: int) -> Optional[List[Any]]:
        """Load ``page`` of a paginated set; ``None`` when the request is rejected."""
        current = self.state.pagination.get(key)
        if current is None:
            return None
        target = shift_page(current, page)
        if target is None:
            self._logger.debug("Rejected page %s for %s (total pages %s)", page, key, current.total_pages)
            return None

        match = _SERIES_DRAWS_PAGE_KEY.match(key)
        if match:
            return await self.fetch_series_draws(int(match.group(1)), page=target.page, page_size=target.page_size)
        match = _PARTICIPANTS_PAGE_KEY.match(key)
        if match:
            return await self.fetch_draw_participants(
                int(match.group(1)), int(match.group(2)), page=target.page, page_size=target.page_size
            )
        return None

    async def refresh_all_data(self) -> List[SeriesInfo]:
        self.cache.clear()
        self.state.select(None, None)
        return await self.fetch_all_series(force_refresh=True)

    def invalidate_after_transaction(self, series_index: Optional[int] = None, draw_id: Optional[int] = None) -> int:
        """Drop cached state made stale by a ticket purchase, draw start or completion."""
        removed = self.cache.invalidate_series(series_index, draw_id)
        if series_index is None:
            return removed

        def stale(key: str) -> bool:
            if key in (ALL_SERIES_KEY, series_key(series_index)):
                return True
            if not key.startswith("user_tickets_"):
                return False
            _, s, d = key.rsplit("_", 2)
            return s == str(series_index) and (draw_id is None or d == str(draw_id))

        return removed + self.cache.invalidate(stale)

    def view(self, key: str):
        return self.state.view(key)
