"""Tests for the SQLite-backed decision ledger: ordering, windows, durability."""

from datetime import datetime

import pytest

from tradeledger.journal.decision_ledger import DecisionLedger
from tradeledger.journal.decision_models import AccountState, DecisionPayload, DecisionRecord
from tradeledger.utils.config import reload_settings
from tradeledger.utils.exceptions import OrderingError, StorageError
from tests.conftest import build_record


class TestAppend:

    def test_append_and_count(self, ledger):
        for cycle in range(1, 4):
            ledger.append(build_record(cycle))
        assert ledger.count() == 3
        assert ledger.last_cycle_number() == 3
        assert ledger.get_db_stats()["next_cycle"] == 4

    def test_empty_ledger_bounds(self, ledger):
        assert ledger.bounds() == (0, None, None)
        assert ledger.get_db_stats()["next_cycle"] == 1
        assert ledger.latest(5) == []

    def test_gaps_allowed(self, ledger):
        for cycle in (1, 2, 5, 9):
            ledger.append(build_record(cycle))
        assert [r.cycle_number for r in ledger.latest(10)] == [1, 2, 5, 9]

    @pytest.mark.parametrize("bad_cycle", [3, 2, 1])
    def test_non_increasing_cycle_rejected(self, ledger, bad_cycle):
        """Equal or lower cycle numbers fail and leave the ledger untouched."""
        for cycle in (1, 2, 3):
            ledger.append(build_record(cycle, equity=1000 + cycle))
        before = ledger.latest(10)

        with pytest.raises(OrderingError) as exc_info:
            ledger.append(build_record(bad_cycle, equity=5000))

        assert exc_info.value.last_cycle == 3
        assert exc_info.value.attempted_cycle == bad_cycle
        assert ledger.latest(10) == before
        assert ledger.count() == 3

    def test_append_after_ordering_error_still_works(self, ledger):
        ledger.append(build_record(1))
        with pytest.raises(OrderingError):
            ledger.append(build_record(1))
        ledger.append(build_record(2))
        assert ledger.count() == 2

    def test_append_on_closed_ledger_raises_storage_error(self, tmp_path):
        led = DecisionLedger(str(tmp_path / "closed.db"), strategy_id="closed")
        led.close()
        with pytest.raises(StorageError):
            led.append(build_record(1))


class TestLatest:

    @pytest.mark.parametrize("n", [1, 3, 7, 10, 25])
    def test_returns_last_min_n_total_ascending(self, ledger, n):
        for cycle in range(1, 11):
            ledger.append(build_record(cycle))
        result = ledger.latest(n)
        expected = list(range(max(1, 11 - n), 11))
        assert [r.cycle_number for r in result] == expected

    def test_non_positive_n_returns_empty(self, ledger):
        ledger.append(build_record(1))
        assert ledger.latest(0) == []
        assert ledger.latest(-3) == []

    def test_read_limit_caps_huge_requests(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MAX_READ_LIMIT", "4")
        reload_settings()
        led = DecisionLedger(str(tmp_path / "capped.db"), strategy_id="capped")
        try:
            for cycle in range(1, 11):
                led.append(build_record(cycle))
            assert [r.cycle_number for r in led.latest(10000)] == [7, 8, 9, 10]
        finally:
            led.close()


class TestRoundTrip:

    def test_record_read_back_is_identical(self, ledger):
        record = DecisionRecord(
            cycle_number=42,
            timestamp=datetime.fromisoformat("2025-03-04T05:06:07.123456+00:00"),
            account_state=AccountState(
                total_equity=1234.5678901234,
                available_balance=0.1 + 0.2,
                total_pnl=-17.000000001,
                position_count=2,
                margin_used_pct=33.333333333333336,
                position_keys=("BTCUSDT_long", "ETHUSDT_short"),
            ),
            decision_payload=DecisionPayload(format="application/octet-stream", data=b"\x00\xff\xfe raw"),
            success=False,
            error_message="order rejected: insufficient margin",
        )
        ledger.append(record)
        assert ledger.latest(1)[0] == record

    def test_naive_timestamp_is_stored_as_utc(self, ledger):
        naive = datetime(2025, 1, 1, 12, 0, 0)
        record = DecisionRecord(cycle_number=1, timestamp=naive)
        ledger.append(record)
        stored = ledger.latest(1)[0]
        assert stored.timestamp.utcoffset().total_seconds() == 0
        assert stored == record

    def test_text_payload_is_kept_verbatim(self, ledger):
        record = DecisionRecord(cycle_number=1, timestamp=datetime(2025, 1, 1),
                                decision_payload=DecisionPayload(data='{"note": "持仓"}'))
        ledger.append(record)
        assert ledger.latest(1)[0].decision_payload.data == '{"note": "持仓"}'.encode("utf-8")


class TestDurability:

    def test_history_survives_reopen(self, tmp_path):
        path = str(tmp_path / "durable.db")
        led = DecisionLedger(path, strategy_id="durable")
        records = [build_record(c, equity=1000 + c) for c in range(1, 6)]
        for r in records:
            led.append(r)
        led.close()

        reopened = DecisionLedger(path, strategy_id="durable")
        try:
            assert reopened.latest(10) == records
            with pytest.raises(OrderingError):
                reopened.append(build_record(5))
            reopened.append(build_record(6))
            assert reopened.count() == 6
        finally:
            reopened.close()

    def test_db_stats(self, ledger):
        ledger.append(build_record(3))
        ledger.append(build_record(8))
        stats = ledger.get_db_stats()
        assert stats["records"] == 2
        assert stats["first_cycle"] == 3
        assert stats["last_cycle"] == 8
        assert stats["next_cycle"] == 9


class TestScans:

    def test_iter_records_streams_in_small_batches(self, ledger):
        for cycle in range(1, 12):
            ledger.append(build_record(cycle))
        streamed = list(ledger.iter_records(batch_size=2))
        assert [r.cycle_number for r in streamed] == list(range(1, 12))

    def test_iter_records_bounds(self, ledger):
        for cycle in range(1, 12):
            ledger.append(build_record(cycle))
        streamed = list(ledger.iter_records(after_cycle=3, upto_cycle=7))
        assert [r.cycle_number for r in streamed] == [4, 5, 6, 7]

    def test_all_pins_snapshot(self, ledger):
        for cycle in range(1, 4):
            ledger.append(build_record(cycle))
        _, _, last = ledger.bounds()
        ledger.append(build_record(4))
        assert [r.cycle_number for r in ledger.all(upto_cycle=last)] == [1, 2, 3]

    def test_cycle_at_offset_from_end(self, ledger):
        for cycle in (2, 4, 6, 8):
            ledger.append(build_record(cycle))
        assert ledger.cycle_at_offset_from_end(1) == 8
        assert ledger.cycle_at_offset_from_end(3) == 4
        assert ledger.cycle_at_offset_from_end(5) is None
        assert ledger.cycle_at_offset_from_end(1, upto_cycle=5) == 4
