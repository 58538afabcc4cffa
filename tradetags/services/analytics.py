"""
Tag analytics service.

Read-only queries over the tag index: rankings, search, boolean record
filtering, per-tag performance, and summary analytics (correlations, usage
over time).
"""
import logging
import math
from datetime import date
from itertools import combinations
from typing import Iterable, List, Optional, Sequence

import pandas as pd

from tradetags.core.models import (
    DetailedTagPerformance, FilterMode, TagAnalytics, TagCorrelation,
    TagFilter, TagIndexEntry, TagPerformance, TradeRecord,
)
from tradetags.core.performance import calculate_detailed_performance, calculate_tag_performance
from tradetags.core.tag_index import TagIndex
from tradetags.core.tag_normalizer import process_tags, record_tags, sanitize_tag, strip_marker
from tradetags.core.tag_query import parse_query

logger = logging.getLogger(__name__)


def _by_count(entry: TagIndexEntry):
    return (-entry.count, entry.tag)


def _by_recency(entry: TagIndexEntry):
    # Undated tags sort after every dated one
    ordinal = entry.last_used.toordinal() if entry.last_used else date.min.toordinal() - 1
    return (-ordinal, entry.tag)


def _normalize_query_tags(tags: Sequence[str]) -> List[str]:
    return process_tags(list(tags))


class TagAnalyticsEngine:
    """
    Answers analytics queries from a caller-owned TagIndex.

    Every query takes the authoritative record collection so a stale or
    never-built index can be rebuilt before answering.
    """

    def __init__(self, index: Optional[TagIndex] = None):
        """
        Initialize analytics engine.

        Parameters
        ----
        index : TagIndex, optional
            Shared tag index. A private one is created if omitted.
        """
        self.index = index if index is not None else TagIndex()

    def most_used(self, records: Iterable[TradeRecord], limit: int = 10) -> List[TagIndexEntry]:
        """Tags by usage count descending, ties broken by tag name."""
        entries = sorted(self.index.entries(records), key=_by_count)
        return entries[:limit]

    def least_used(self, records: Iterable[TradeRecord], limit: int = 10) -> List[TagIndexEntry]:
        """Tags by usage count ascending, ties broken by tag name."""
        entries = sorted(self.index.entries(records), key=lambda e: (e.count, e.tag))
        return entries[:limit]

    def most_recent(self, records: Iterable[TradeRecord], limit: int = 10) -> List[TagIndexEntry]:
        """Tags by last-used date descending, ties broken by tag name."""
        entries = sorted(self.index.entries(records), key=_by_recency)
        return entries[:limit]

    def search(self, records: Iterable[TradeRecord], query: Optional[str]) -> List[TagIndexEntry]:
        """
        Case-insensitive substring search over tag content.

        The marker is stripped from both the query and the tags. An empty
        query returns every tag.
        """
        entries = sorted(self.index.entries(records), key=_by_count)
        term = strip_marker((query or "").strip()).lower()
        if not term:
            return entries
        return [entry for entry in entries if term in strip_marker(entry.tag)]

    def filter_records(self, records: Iterable[TradeRecord], tag_filter: TagFilter) -> List[TradeRecord]:
        """
        Filter records by include/exclude tag sets.

        A record carrying any excluded tag is dropped. With no include tags
        every other record passes; otherwise AND requires every include tag
        and OR at least one. Include tags that are all invalid match nothing.
        A boolean `query` expression must also hold. Input order is preserved.

        Raises
        ----
        ValidationError
            If `tag_filter.query` is not a valid expression
        """
        include = _normalize_query_tags(tag_filter.include_tags)
        if tag_filter.include_tags and not include:
            logger.debug("No valid include tags in %r", tag_filter.include_tags)
            return []
        exclude = set(_normalize_query_tags(tag_filter.exclude_tags))
        mode = FilterMode(tag_filter.mode)
        query = strip_marker((tag_filter.search_query or "").strip()).lower()
        expression = parse_query(tag_filter.query)

        matched = []
        for record in records:
            tags = set(record_tags(record.tags))

            if tags & exclude:
                continue

            if include:
                if not tags:
                    continue
                if mode == FilterMode.AND and not all(tag in tags for tag in include):
                    continue
                if mode == FilterMode.OR and not any(tag in tags for tag in include):
                    continue

            if query and not any(query in strip_marker(tag) for tag in tags):
                continue

            if not expression.matches(tags):
                continue

            matched.append(record)
        return matched

    def search_records(self, records: Iterable[TradeRecord], query: str) -> List[TradeRecord]:
        """Records satisfying a boolean tag query such as ``#a AND NOT #b``."""
        return self.filter_records(records, TagFilter(query=query))

    def records_with_tag(self, records: Iterable[TradeRecord], tag: str) -> List[TradeRecord]:
        normalized = sanitize_tag(tag)
        return [record for record in records if normalized in record_tags(record.tags)]

    def performance(self, records: Iterable[TradeRecord], tag: str) -> TagPerformance:
        """Performance for a single tag, using the same formula as the index."""
        normalized = sanitize_tag(tag)
        return calculate_tag_performance(normalized, self.records_with_tag(records, normalized))

    def detailed_performance(self, records: Iterable[TradeRecord], tag: str) -> DetailedTagPerformance:
        normalized = sanitize_tag(tag)
        return calculate_detailed_performance(normalized, self.records_with_tag(records, normalized))

    def correlations(
        self,
        records: Iterable[TradeRecord],
        tags: Optional[Sequence[str]] = None,
        min_correlation: float = 0.0,
    ) -> List[TagCorrelation]:
        """
        Phi coefficient between pairs of tags over record co-occurrence.

        Parameters
        ----
        records : Iterable[TradeRecord]
            Record collection
        tags : Sequence[str], optional
            Tags to pair up. Defaults to the 10 most used tags.
        min_correlation : float
            Only pairs with |correlation| at or above this value are returned

        Returns
        ----
        List[TagCorrelation]
            Sorted by absolute correlation descending
        """
        records = list(records)
        if tags is None:
            tags = [entry.tag for entry in self.most_used(records, 10)]
        else:
            tags = _normalize_query_tags(tags)

        tag_sets = [set(record_tags(record.tags)) for record in records]
        results = []
        for tag1, tag2 in combinations(tags, 2):
            both = only1 = only2 = neither = 0
            for tag_set in tag_sets:
                has1, has2 = tag1 in tag_set, tag2 in tag_set
                if has1 and has2:
                    both += 1
                elif has1:
                    only1 += 1
                elif has2:
                    only2 += 1
                else:
                    neither += 1

            correlation = _phi(only1, only2, both, neither)
            if abs(correlation) >= min_correlation:
                results.append(TagCorrelation(tag1, tag2, correlation, both))

        results.sort(key=lambda c: (-abs(c.correlation), c.tag1, c.tag2))
        return results

    def usage_over_time(self, records: Iterable[TradeRecord], freq: str = "M") -> pd.DataFrame:
        """
        Tag usage per period.

        Returns
        ----
        pd.DataFrame
            Columns: period, tag, count. Undated records are skipped.
        """
        rows = []
        for record in records:
            if record.date is None:
                continue
            for tag in record_tags(record.tags):
                rows.append({"date": pd.Timestamp(record.date), "tag": tag})

        if not rows:
            return pd.DataFrame(columns=["period", "tag", "count"])

        df = pd.DataFrame(rows)
        df["period"] = df["date"].dt.to_period(freq).astype(str)
        return (
            df.groupby(["period", "tag"])
            .size()
            .reset_index(name="count")
            .sort_values(["period", "count", "tag"], ascending=[True, False, True])
            .reset_index(drop=True)
        )

    def analytics(self, records: Iterable[TradeRecord], limit: int = 10) -> TagAnalytics:
        """Summary analytics across every tag."""
        records = list(records)
        entries = self.index.entries(records)

        tag_counts = [len(record_tags(r.tags)) for r in records]
        tagged = [count for count in tag_counts if count > 0]
        average = sum(tagged) / len(tagged) if tagged else 0.0

        performance = sorted((e.performance for e in entries), key=lambda p: p.tag)
        by_win_rate = sorted(performance, key=lambda p: (-p.win_rate, p.tag))
        with_trades = [p for p in by_win_rate if p.total_trades > 0]

        result = TagAnalytics(
            total_tags=len(entries),
            average_tags_per_trade=average,
            most_used_tags=self.most_used(records, limit),
            least_used_tags=self.least_used(records, limit),
            recent_tags=self.most_recent(records, limit),
            tag_performance=performance,
            top_performing_tags=with_trades[:limit],
            worst_performing_tags=list(reversed(with_trades))[:limit],
            tag_correlations=self.correlations(records, min_correlation=0.5),
        )
        logger.debug("Computed analytics for %d tags over %d records", result.total_tags, len(records))
        return result


def _phi(only1: int, only2: int, both: int, neither: int) -> float:
    """Phi coefficient from a 2x2 co-occurrence table."""
    numerator = both * neither - only1 * only2
    denominator = math.sqrt(
        (both + only1) * (only2 + neither) * (both + only2) * (only1 + neither)
    )
    return 0.0 if denominator == 0 else numerator / denominator
