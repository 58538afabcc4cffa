"""
Tests for the tag index and the shared performance formula.
"""
from datetime import date

import pytest

from tradetags.core.models import TradeRecord
from tradetags.core.performance import (
    PROFIT_FACTOR_CAP,
    calculate_detailed_performance,
    calculate_tag_performance,
)
from tradetags.core.tag_index import TagIndex


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


def make_record(record_id, tags, pnl=None, status="closed", day=None, **kwargs):
    return TradeRecord.from_dict({
        "id": record_id,
        "tags": tags,
        "pnl": pnl,
        "status": status,
        "date": day,
        **kwargs,
    })


@pytest.fixture
def records():
    return [
        make_record("1", ["#scalp", "#london"], 100, day="2024-01-02"),
        make_record("2", ["scalp", "#Scalp"], -50, day="2024-01-05"),
        make_record("3", "scalp,news", 75, day="2024-02-01"),
        make_record("4", [], 20, day="2024-02-03"),
        make_record("5", ["#london"], 10, status="open"),
        make_record("6", 123, 40, day="2024-03-01"),
    ]


class TestRebuild:
    """Full rebuild of the index."""

    def test_counts_equal_distinct_record_tag_pairs(self, records):
        index = TagIndex()
        entries = dict(index.get_all(records))

        assert entries["#scalp"].count == 3
        assert entries["#london"].count == 2
        assert entries["#news"].count == 1
        assert sum(entry.count for entry in entries.values()) == 6

    def test_record_ids_and_last_used(self, records):
        index = TagIndex()
        index.rebuild(records)

        scalp = index.get("#scalp")
        assert scalp.record_ids == frozenset({"1", "2", "3"})
        assert scalp.last_used == date(2024, 2, 1)
        # Undated record 5 never advances last_used
        assert index.get("#london").last_used == date(2024, 1, 2)

    def test_undated_only_tag_has_no_last_used(self):
        index = TagIndex()
        index.rebuild([make_record("1", ["#x"], 5)])
        assert index.get("#x").last_used is None

    def test_tags_for_record(self, records):
        index = TagIndex()
        index.rebuild(records)
        assert index.tags_for("2") == ("#scalp",)
        assert index.tags_for("6") == ()
        assert index.record("3").pnl == 75

    def test_entry_performance_matches_formula(self, records):
        index = TagIndex()
        index.rebuild(records)
        scalp_records = [r for r in records if r.id in {"1", "2", "3"}]
        assert index.get("#scalp").performance == calculate_tag_performance("#scalp", scalp_records)


class TestStaleness:
    """TTL-driven rebuilds and invalidation."""

    def test_never_built_is_stale(self):
        index = TagIndex(ttl=300, clock=FakeClock())
        assert index.is_stale()
        assert not index.is_built

    def test_fresh_index_is_reused(self, records):
        clock = FakeClock()
        index = TagIndex(ttl=300, clock=clock)
        index.get_all(records)

        clock.now = 299
        assert not index.is_stale()
        # A fresh snapshot is served even though the records changed
        assert "#scalp" in dict(index.get_all([]))

    def test_stale_index_is_rebuilt(self, records):
        clock = FakeClock()
        index = TagIndex(ttl=300, clock=clock)
        index.get_all(records)

        clock.now = 301
        assert index.is_stale()
        assert index.get_all([]) == []

    def test_invalidate_forces_rebuild(self, records):
        index = TagIndex(ttl=300, clock=FakeClock())
        index.get_all(records)
        index.invalidate()
        assert index.is_stale()
        assert len(index) == 0

    def test_ttl_from_environment(self, monkeypatch):
        monkeypatch.setenv("TRADETAGS_INDEX_TTL", "12")
        assert TagIndex().ttl == 12.0
        monkeypatch.setenv("TRADETAGS_INDEX_TTL", "soon")
        assert TagIndex().ttl == 300.0

    def test_orphaned_tags(self, records):
        index = TagIndex()
        index.rebuild(records)
        remaining = [r for r in records if r.id != "3"]
        assert index.orphaned_tags(remaining) == ["#news"]


class TestPerformance:
    """Win rate, average P&L and profit factor."""

    def test_example_scalp_records(self):
        trades = [
            make_record("1", ["#scalp"], 100),
            make_record("2", ["#scalp"], -50),
            make_record("3", ["#scalp"], 75),
        ]
        perf = calculate_tag_performance("#scalp", trades)
        assert perf.total_trades == 3
        assert perf.win_rate == pytest.approx(66.67, abs=0.01)
        assert perf.total_pnl == 125
        assert perf.average_pnl == pytest.approx(41.67, abs=0.01)
        assert perf.profit_factor == pytest.approx(3.5)

    def test_no_closed_records(self):
        perf = calculate_tag_performance("#x", [make_record("1", ["#x"], 100, status="open")])
        assert perf.total_trades == 0
        assert perf.win_rate == 0
        assert perf.average_pnl == 0

    def test_missing_pnl_counts_as_zero(self):
        perf = calculate_tag_performance("#x", [make_record("1", ["#x"], None), make_record("2", ["#x"], 10)])
        assert perf.total_trades == 2
        assert perf.win_rate == 50
        assert perf.total_pnl == 10

    def test_profit_factor_cap(self):
        perf = calculate_tag_performance("#x", [make_record("1", ["#x"], 10)])
        assert perf.profit_factor == PROFIT_FACTOR_CAP

    def test_detailed_performance(self):
        trades = [
            make_record("1", ["#x"], 100, day="2024-01-01"),
            make_record("2", ["#x"], -30, day="2024-01-02"),
            make_record("3", ["#x"], -20, day="2024-01-03"),
            make_record("4", ["#x"], 50, day="2024-02-01"),
        ]
        detailed = calculate_detailed_performance("#x", trades)
        assert detailed.best_trade == 100
        assert detailed.worst_trade == -30
        assert detailed.win_streak == 1
        assert detailed.loss_streak == 2
        assert detailed.max_drawdown == 50
        assert detailed.recovery_factor == pytest.approx(2.0)
        assert detailed.consistency == 100
