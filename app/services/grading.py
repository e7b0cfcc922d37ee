"""Grading engine - pure score arithmetic shared by sheets, results and the aggregator."""

import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from numbers import Real
from typing import Any

from app.core.exceptions import InvalidScoreError, ValidationFailedError


@dataclass(frozen=True)
class GradeBand:
    """Totals at or above ``min_score`` (and below the next band) get this grade."""

    min_score: float
    grade: str
    remark: str


@dataclass(frozen=True)
class EntryScore:
    total: float
    grade: str
    remark: str


DEFAULT_GRADE_BANDS: tuple[GradeBand, ...] = (
    GradeBand(80, "A", "Excellent"),
    GradeBand(70, "B", "Very Good"),
    GradeBand(60, "C", "Good"),
    GradeBand(50, "D", "Fair"),
    GradeBand(40, "E", "Poor"),
    GradeBand(0, "F", "Fail"),
)


def build_bands(ranges: Iterable[Mapping[str, Any]] | None) -> tuple[GradeBand, ...]:
    """
    Turn a school's configured ranges into bands, highest first.

    Falls back to the defaults when nothing is configured. Configured bands
    must have distinct thresholds and include one starting at 0 so that
    every non-negative total is covered.
    """
    if not ranges:
        return DEFAULT_GRADE_BANDS

    bands = sorted(
        (
            GradeBand(float(r["min_score"]), str(r["grade"]), str(r.get("remark", "")))
            for r in ranges
        ),
        key=lambda band: band.min_score,
        reverse=True,
    )
    thresholds = [band.min_score for band in bands]
    if len(set(thresholds)) != len(thresholds):
        raise ValidationFailedError("Grade bands must have distinct minimum scores")
    if thresholds[-1] != 0:
        raise ValidationFailedError("Grade bands must include a band starting at 0")
    return tuple(bands)


def grade_for(total: float, bands: Sequence[GradeBand] = DEFAULT_GRADE_BANDS) -> GradeBand:
    """Return the band a total falls into. Totals above any maximum use the top band."""
    for band in bands:
        if total >= band.min_score:
            return band
    # build_bands guarantees a 0 band, so only negative totals get here
    raise InvalidScoreError(f"Total {total} is below every grade band")


def _validate_score(name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, Real):
        raise InvalidScoreError(f"Score for '{name}' must be a number")
    if not math.isfinite(value):
        raise InvalidScoreError(f"Score for '{name}' must be a finite number")
    if value < 0:
        raise InvalidScoreError(f"Score for '{name}' cannot be negative")
    return float(value)


def compute_entry(
    component_scores: Mapping[str, Any],
    bands: Sequence[GradeBand] = DEFAULT_GRADE_BANDS,
) -> EntryScore:
    """Total a subject's component scores and grade the total."""
    total = sum(
        _validate_score(name, value) for name, value in component_scores.items()
    )
    total = round(total, 2)
    band = grade_for(total, bands)
    return EntryScore(total=total, grade=band.grade, remark=band.remark)


def aggregate(
    entries: Sequence[Mapping[str, Any]],
    weights: Mapping[str, float] | None = None,
) -> tuple[float, float]:
    """
    Return ``(total_score, average_score)`` for a list of subject entries.

    Each entry needs a ``total``. When ``weights`` is given it maps subject
    labels to weights (missing labels weigh 1) and the average becomes
    ``sum(total * weight) / sum(weight)``.
    """
    if not entries:
        return 0.0, 0.0

    total_score = round(sum(float(entry["total"]) for entry in entries), 2)

    if weights:
        weighted_sum = 0.0
        weight_sum = 0.0
        for entry in entries:
            weight = float(weights.get(entry.get("subject", ""), 1.0))
            weighted_sum += float(entry["total"]) * weight
            weight_sum += weight
        average_score = weighted_sum / weight_sum if weight_sum else 0.0
    else:
        average_score = total_score / len(entries)

    return total_score, round(average_score, 2)


def competition_rank(scores: Mapping[Any, float]) -> dict[Any, int]:
    """
    Rank keys by score, highest first, using competition ranking.

    Equal scores share a position and the next distinct score skips ahead,
    so ``[90, 90, 80]`` ranks ``[1, 1, 3]``.
    """
    ordered = sorted(scores.items(), key=lambda item: item[1], reverse=True)
    positions: dict[Any, int] = {}
    previous_score: float | None = None
    previous_position = 0
    for index, (key, score) in enumerate(ordered, start=1):
        if score != previous_score:
            previous_position = index
            previous_score = score
        positions[key] = previous_position
    return positions
