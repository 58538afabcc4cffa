"""
Tag Index
=========

In-memory derived structure mapping each normalized tag to its usage count,
owning record ids, last-used date and performance snapshot.

The index is never patched incrementally: ``rebuild`` produces a complete new
snapshot and swaps it in with a single assignment, so readers never observe a
partially built index. A snapshot older than the TTL is considered stale and
is rebuilt on the next ``get_all``.

The index is an explicit object owned by the caller (one per session or
request). It is not thread-safe; a host that queries it from several threads
must guard ``rebuild`` and the read methods with a read-write lock.
"""
import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from tradetags.core.config import get_index_ttl
from tradetags.core.models import TagIndexEntry, TradeRecord
from tradetags.core.performance import calculate_tag_performance
from tradetags.core.tag_normalizer import record_tags

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Snapshot:
    entries: Dict[str, TagIndexEntry] = field(default_factory=dict)
    records: Dict[str, TradeRecord] = field(default_factory=dict)
    record_tags: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    built_at: Optional[float] = None


class TagIndex:
    """
    Secondary index over a trade record collection.

    Parameters
    ----
    ttl : float, optional
        Staleness threshold in seconds. Defaults to get_index_ttl() (5 minutes).
    clock : Callable[[], float], optional
        Monotonic time source, injectable for tests.
    """

    def __init__(self, ttl: Optional[float] = None, clock: Optional[Callable[[], float]] = None):
        self.ttl = get_index_ttl() if ttl is None else ttl
        self._clock = clock or time.monotonic
        self._snapshot = _Snapshot()

    @property
    def is_built(self) -> bool:
        return self._snapshot.built_at is not None

    def rebuild(self, records: Iterable[TradeRecord]) -> None:
        """
        Rebuild the whole index from `records`.

        Each record's raw tags go through the normalizer, so a record counts
        once per distinct normalized tag.
        """
        record_ids: Dict[str, Set[str]] = defaultdict(set)
        counts: Dict[str, int] = defaultdict(int)
        last_used: Dict[str, Optional[date]] = {}
        owners: Dict[str, List[TradeRecord]] = defaultdict(list)
        by_id: Dict[str, TradeRecord] = {}
        tags_by_record: Dict[str, Tuple[str, ...]] = {}

        for record in records:
            tags = record_tags(record.tags)
            by_id[record.id] = record
            tags_by_record[record.id] = tuple(tags)

            for tag in tags:
                counts[tag] += 1
                record_ids[tag].add(record.id)
                owners[tag].append(record)

                current = last_used.get(tag)
                if record.date is not None and (current is None or record.date > current):
                    last_used[tag] = record.date
                else:
                    last_used.setdefault(tag, current)

        entries = {
            tag: TagIndexEntry(
                tag=tag,
                count=counts[tag],
                record_ids=frozenset(record_ids[tag]),
                last_used=last_used.get(tag),
                performance=calculate_tag_performance(tag, owners[tag]),
            )
            for tag in counts
        }

        self._snapshot = _Snapshot(
            entries=entries,
            records=by_id,
            record_tags=tags_by_record,
            built_at=self._clock(),
        )
        logger.debug("Rebuilt tag index: %d tags over %d records", len(entries), len(by_id))

    def is_stale(self) -> bool:
        """True if never built or older than the TTL."""
        built_at = self._snapshot.built_at
        if built_at is None:
            return True
        return self._clock() - built_at > self.ttl

    def invalidate(self) -> None:
        """Force the next get_all() to rebuild (e.g. after a migration wrote records)."""
        self._snapshot = _Snapshot()
        logger.debug("Tag index invalidated")

    def get_all(self, records: Iterable[TradeRecord]) -> List[Tuple[str, TagIndexEntry]]:
        """
        Return every (tag, entry) pair, rebuilding from `records` first if stale.

        This may do O(records) work.
        """
        if self.is_stale():
            self.rebuild(records)
        return list(self._snapshot.entries.items())

    def entries(self, records: Iterable[TradeRecord]) -> List[TagIndexEntry]:
        return [entry for _, entry in self.get_all(records)]

    def get(self, tag: str) -> Optional[TagIndexEntry]:
        """Entry for an already-normalized tag in the current snapshot."""
        return self._snapshot.entries.get(tag)

    def record(self, record_id: str) -> Optional[TradeRecord]:
        """Indexed record by id from the current snapshot."""
        return self._snapshot.records.get(record_id)

    def tags_for(self, record_id: str) -> Tuple[str, ...]:
        """Normalized tags of an indexed record."""
        return self._snapshot.record_tags.get(record_id, ())

    def orphaned_tags(self, records: Iterable[TradeRecord]) -> List[str]:
        """Indexed tags that no record in `records` carries any more."""
        current: Set[str] = set()
        for record in records:
            current.update(record_tags(record.tags))
        return sorted(tag for tag in self._snapshot.entries if tag not in current)

    def __len__(self) -> int:
        return len(self._snapshot.entries)

    def __contains__(self, tag: str) -> bool:
        return tag in self._snapshot.entries
