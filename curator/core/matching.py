"""Pure artist-name matching logic: dedupe, edit distance and candidate selection."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from .types import Event, MatchedArtist


def dedupe_key(name: str) -> str:
    return (name or "").strip().casefold()


def dedupe_events(events: Iterable[Event]) -> list[Event]:
    """Drop repeat listings of the same artist; the first occurrence wins."""

    seen: set[str] = set()
    unique: list[Event] = []
    for event in events:
        key = dedupe_key(event.artist_name)
        if not key or key in seen:
            continue
        seen.add(key)
        unique.append(event)
    return unique


def levenshtein(left: str, right: str) -> int:
    """Classic insert/delete/substitute edit distance."""

    if left == right:
        return 0
    if len(left) < len(right):
        left, right = right, left
    if not right:
        return len(left)

    previous = list(range(len(right) + 1))
    for i, left_char in enumerate(left, start=1):
        current = [i]
        for j, right_char in enumerate(right, start=1):
            cost = 0 if left_char == right_char else 1
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + cost,
                )
            )
        previous = current
    return previous[-1]


def _candidate_name(candidate: Mapping[str, Any]) -> str:
    return str(candidate.get("name") or "")


def _to_matched(candidate: Mapping[str, Any], *, method: str, distance: int) -> MatchedArtist:
    genres = candidate.get("genres") or ()
    return MatchedArtist(
        id=str(candidate["id"]),
        name=_candidate_name(candidate),
        genres=tuple(str(genre) for genre in genres),
        method=method,  # type: ignore[arg-type]
        distance=distance,
    )


def select_catalog_match(
    query: str,
    candidates: Sequence[Mapping[str, Any]],
    *,
    max_distance: int = 1,
) -> MatchedArtist | None:
    """Pick the catalog artist that best answers ``query``.

    A case-insensitive exact name match wins outright, in catalog order.
    Otherwise the candidate with the smallest case-insensitive edit distance
    is taken if that distance is at most ``max_distance``; ties keep the
    catalog's own ranking.
    """

    target = (query or "").strip().lower()
    usable = [c for c in candidates if c and c.get("id") and _candidate_name(c)]
    if not target or not usable:
        return None

    for candidate in usable:
        if _candidate_name(candidate).lower() == target:
            return _to_matched(candidate, method="exact", distance=0)

    best: Mapping[str, Any] | None = None
    best_distance: int | None = None
    for candidate in usable:
        distance = levenshtein(target, _candidate_name(candidate).lower())
        if best_distance is None or distance < best_distance:
            best, best_distance = candidate, distance

    if best is None or best_distance is None or best_distance > max_distance:
        return None
    return _to_matched(best, method="fuzzy", distance=best_distance)


__all__ = ["dedupe_events", "dedupe_key", "levenshtein", "select_catalog_match"]
