"""
Tag suggestion service.

Ranks indexed tags for a partial input. A text match tier (exact > prefix >
substring) dominates the score; usage frequency, recency and co-occurrence
with the record being tagged only reorder tags within a tier.
"""
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from tradetags.core.models import TagIndexEntry, TagSuggestion, TradeRecord
from tradetags.core.tag_index import TagIndex
from tradetags.core.tag_normalizer import record_tags, strip_marker

logger = logging.getLogger(__name__)

MATCH_WEIGHTS = {
    "exact_match": 300.0,
    "prefix_match": 200.0,
    "partial_match": 100.0,
}
# Bonus weights sum below the gap between match tiers
USAGE_WEIGHT = 50.0
RECENCY_WEIGHT = 25.0
CONTEXT_WEIGHT = 20.0

# Record attributes compared against historical records for the context bonus
CONTEXT_FIELDS = ("instrument", "strategy", "side")

Context = Union[TradeRecord, Mapping[str, Any]]


def _match_reason(content: str, term: str) -> Optional[str]:
    if content == term:
        return "exact_match"
    if content.startswith(term):
        return "prefix_match"
    if term in content:
        return "partial_match"
    return None


class TagSuggestionEngine:
    """
    Produces ranked tag suggestions from a caller-owned TagIndex.
    """

    def __init__(self, index: Optional[TagIndex] = None):
        self.index = index if index is not None else TagIndex()

    def suggest(
        self,
        records: Iterable[TradeRecord],
        partial_input: Optional[str],
        context: Optional[Context] = None,
        limit: int = 10,
    ) -> List[TagSuggestion]:
        """
        Rank candidate tags for a partial input.

        Parameters
        ----
        records : Iterable[TradeRecord]
            Authoritative record collection (used to rebuild a stale index)
        partial_input : str
            What the user has typed so far, with or without the marker
        context : TradeRecord or mapping, optional
            The partially filled record being tagged. Tags it already carries
            are not suggested; shared instrument/strategy/side with historical
            records adds a bonus.
        limit : int
            Maximum number of suggestions

        Returns
        ----
        List[TagSuggestion]
            Highest score first; ties broken by usage count, then tag name
        """
        entries = self.index.entries(records)
        excluded = set()
        if context is not None:
            excluded = set(record_tags(context.get("tags")))
        candidates = [e for e in entries if e.tag not in excluded]
        if not candidates:
            return []

        term = strip_marker((partial_input or "").strip().lower())

        if not term:
            ranked = sorted(candidates, key=lambda e: (-e.count, e.tag))[:limit]
            return [
                TagSuggestion(
                    tag=e.tag,
                    score=float(e.count),
                    reason="high_frequency",
                    frequency=e.count,
                    last_used=e.last_used,
                )
                for e in ranked
            ]

        max_count = max(e.count for e in candidates)
        dated = [e.last_used for e in candidates if e.last_used is not None]
        oldest = min(dated) if dated else None
        newest = max(dated) if dated else None

        suggestions = []
        for entry in candidates:
            reason = _match_reason(strip_marker(entry.tag), term)
            if reason is None:
                continue

            score = MATCH_WEIGHTS[reason]
            score += USAGE_WEIGHT * entry.count / max_count
            score += RECENCY_WEIGHT * self._recency(entry, oldest, newest)

            context_note = None
            if context is not None:
                share = self._context_share(entry, context)
                if share > 0:
                    score += CONTEXT_WEIGHT * share
                    context_note = f"Used on {share:.0%} of similar trades"

            suggestions.append(TagSuggestion(
                tag=entry.tag,
                score=round(score, 4),
                reason=reason,
                frequency=entry.count,
                last_used=entry.last_used,
                context=context_note,
            ))

        suggestions.sort(key=lambda s: (-s.score, -s.frequency, s.tag))
        logger.debug("Suggested %d tags for %r", len(suggestions), partial_input)
        return suggestions[:limit]

    @staticmethod
    def _recency(entry: TagIndexEntry, oldest, newest) -> float:
        """Last-used date scaled to [0, 1] across the candidate set."""
        if entry.last_used is None or oldest is None:
            return 0.0
        span = (newest - oldest).days
        if span == 0:
            return 1.0
        return (entry.last_used - oldest).days / span

    def _context_share(self, entry: TagIndexEntry, context: Context) -> float:
        """Fraction of the tag's records sharing any context attribute."""
        wanted: Dict[str, Any] = {}
        for name in CONTEXT_FIELDS:
            value = context.get(name)
            if value not in (None, ""):
                wanted[name] = str(value).lower()
        if not wanted or entry.count == 0:
            return 0.0

        matches = 0
        for record_id in entry.record_ids:
            record = self.index.record(record_id)
            if record is None:
                continue
            for name, value in wanted.items():
                other = record.get(name)
                if other is not None and str(other).lower() == value:
                    matches += 1
                    break
        return matches / len(entry.record_ids)
