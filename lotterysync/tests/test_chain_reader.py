import asyncio
import datetime as dt
import unittest

from web3 import Web3

from lotterysync.chain_reader import CHAIN_ID_OFFSET, ChainReader, format_ether
from lotterysync.errors import ChainReadError
from lotterysync.types import ZERO_ADDRESS

WALLET = "0x" + "ab" * 20
NOW = dt.datetime(2025, 3, 1, 12, 0, tzinfo=dt.timezone.utc)


class _BoundCall:
    def __init__(self, handler, args) -> None:
        self._handler = handler
        self._args = args

    def call(self):
        return self._handler(*self._args)


class FakeFunctions:
    def __init__(self, handlers) -> None:
        self._handlers = handlers
        self.calls = []

    def __getattr__(self, name):
        handlers = self.__dict__["_handlers"]
        if name not in handlers:
            raise AttributeError(f"contract has no function {name}")

        def bind(*args):
            self.calls.append((name, args))
            return _BoundCall(handlers[name], args)

        return bind


class FakeContract:
    def __init__(self, **handlers) -> None:
        self.functions = FakeFunctions(handlers)


def failing(*_args):
    raise ValueError("execution reverted")


def active_draw_handlers(**overrides):
    handlers = dict(
        getSeriesNameByIndex=lambda index: "Weekly Express Series",
        getCompleted=lambda draw_id: False,
        getDrawStartTime=lambda draw_id: 1_740_000_000,
        getEstimatedEndTime=lambda draw_id: 1_740_604_800,
        getJackpot=lambda draw_id: 2 * 10**18,
        getTicketPrice=lambda draw_id: 10**16,
        getTotalTicketsSold=lambda draw_id: 4,
        getWinningNumbers=lambda draw_id: [9, 9, 9, 9, 9, 9],
        getWinner=lambda draw_id: [WALLET],
    )
    handlers.update(overrides)
    return handlers


class FormatEtherTests(unittest.TestCase):
    def test_base_units_become_decimal_strings(self) -> None:
        self.assertEqual(format_ether(10**16), "0.01")
        self.assertEqual(format_ether(2 * 10**18), "2")
        self.assertEqual(format_ether(100 * 10**18), "100")
        self.assertEqual(format_ether(0), "0")


class DrawSnapshotTests(unittest.TestCase):
    def _reader(self, **handlers) -> ChainReader:
        return ChainReader(FakeContract(**handlers), now=lambda: NOW)

    def test_active_draw_is_normalised_without_outcome_reads(self) -> None:
        contract = FakeContract(**active_draw_handlers())
        reader = ChainReader(contract, now=lambda: NOW)

        draw = asyncio.run(reader.get_draw_snapshot(0, 7))

        self.assertEqual(draw.id, CHAIN_ID_OFFSET + 7)
        self.assertEqual(draw.series_name, "Weekly Express Series")
        self.assertFalse(draw.is_completed)
        self.assertEqual(draw.jackpot_amount, "2")
        self.assertEqual(draw.ticket_price, "0.01")
        self.assertEqual(draw.participant_count, 4)
        self.assertEqual(draw.start_time, dt.datetime.fromtimestamp(1_740_000_000, tz=dt.timezone.utc))
        self.assertEqual(draw.winning_numbers, ())
        self.assertEqual(draw.winner_address, ZERO_ADDRESS)
        called = {name for name, _ in contract.functions.calls}
        self.assertNotIn("getWinningNumbers", called)

    def test_completed_draw_reads_outcome(self) -> None:
        reader = self._reader(
            **active_draw_handlers(
                getCompleted=lambda draw_id: True,
                getWinningNumbers=lambda draw_id: [3, 11, 19, 27, 33, 5],
            )
        )

        draw = asyncio.run(reader.get_draw_snapshot(1, 2))

        self.assertTrue(draw.is_completed)
        self.assertEqual(draw.winning_numbers, (3, 11, 19, 27, 33, 5))
        self.assertEqual(draw.winner_address, WALLET)
        self.assertEqual(draw.prize_amount, "2")

    def test_unavailable_fields_degrade_to_defaults_with_warning(self) -> None:
        reader = self._reader(
            **active_draw_handlers(
                getSeriesNameByIndex=failing,
                getJackpot=failing,
                getEstimatedEndTime=failing,
                getDrawStartTime=failing,
            )
        )

        with self.assertLogs("lotterysync.chain", level="WARNING") as logs:
            draw = asyncio.run(reader.get_draw_snapshot(4, 9))

        self.assertEqual(draw.series_name, "Series #4")
        self.assertEqual(draw.jackpot_amount, "0")
        self.assertEqual(draw.ticket_price, "0.01")
        self.assertEqual(draw.end_time, NOW + dt.timedelta(days=7))
        self.assertEqual(draw.start_time, NOW)
        self.assertGreaterEqual(len(logs.output), 4)

    def test_completed_draw_with_missing_outcome_still_returns(self) -> None:
        reader = self._reader(
            **active_draw_handlers(
                getCompleted=lambda draw_id: True,
                getWinningNumbers=failing,
                getWinner=failing,
                getEstimatedEndTime=failing,
            )
        )

        with self.assertLogs("lotterysync.chain", level="WARNING"):
            draw = asyncio.run(reader.get_draw_snapshot(0, 1))

        self.assertEqual(draw.winning_numbers, ())
        self.assertEqual(draw.winner_address, ZERO_ADDRESS)
        self.assertEqual(draw.end_time, NOW - dt.timedelta(days=1))

    def test_unreachable_contract_raises(self) -> None:
        reader = self._reader()
        with self.assertLogs("lotterysync.chain", level="WARNING"):
            with self.assertRaises(ChainReadError):
                asyncio.run(reader.get_draw_snapshot(0, 1))


class SeriesAndTicketTests(unittest.TestCase):
    def test_series_info_and_count(self) -> None:
        reader = ChainReader(
            FakeContract(
                getTotalSeries=lambda: 3,
                getSeriesNameByIndex=lambda index: f"Series {index}",
                getSeriesDrawIdsByIndex=lambda index: [1, 2, 5],
            )
        )

        self.assertEqual(asyncio.run(reader.get_series_count()), 3)
        info = asyncio.run(reader.get_series_info(2))
        self.assertEqual(info.name, "Series 2")
        self.assertEqual(info.draw_ids, (1, 2, 5))

    def test_series_info_requires_draw_ids(self) -> None:
        reader = ChainReader(FakeContract(getSeriesNameByIndex=lambda index: "x", getSeriesDrawIdsByIndex=failing))
        with self.assertRaises(ChainReadError) as ctx:
            asyncio.run(reader.get_series_info(0))
        self.assertEqual(ctx.exception.function, "getSeriesDrawIdsByIndex")

    def test_ticket_reads(self) -> None:
        contract = FakeContract(
            getTotalTicketsSold=lambda draw_id: 2,
            getTicketDetails=lambda draw_id, index: (WALLET, [1, 2, 3, 4, 5], 6, 1_700_000_000),
            getUserTicketsCount=lambda user, draw_id: 1,
            getUserTicketDetails=lambda user, draw_id, index: ([7, 8, 9, 10, 11], 12, 1_700_000_100),
        )
        reader = ChainReader(contract)

        ticket = asyncio.run(reader.get_ticket(3, 1, series_index=2))
        self.assertEqual(ticket.ticket_id, "3-1")
        self.assertEqual(ticket.numbers, (1, 2, 3, 4, 5))
        self.assertEqual(ticket.lotto_number, 6)
        self.assertEqual(ticket.timestamp, 1_700_000_000_000)
        self.assertEqual(ticket.series_index, 2)
        self.assertEqual(asyncio.run(reader.get_ticket_count(3)), 2)

        self.assertEqual(asyncio.run(reader.get_user_ticket_count(WALLET, 3)), 1)
        mine = asyncio.run(reader.get_user_ticket(WALLET, 3, 0))
        self.assertEqual(mine.ticket_id, f"3-{WALLET}-0")
        self.assertEqual(mine.lotto_number, 12)
        name, args = contract.functions.calls[-1]
        self.assertEqual(name, "getUserTicketDetails")
        self.assertEqual(args[0], Web3.to_checksum_address(WALLET))

    def test_failed_ticket_read_raises(self) -> None:
        reader = ChainReader(FakeContract(getTicketDetails=failing))
        with self.assertRaises(ChainReadError):
            asyncio.run(reader.get_ticket(1, 0))


if __name__ == "__main__":
    unittest.main()
