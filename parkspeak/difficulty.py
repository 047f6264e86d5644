from __future__ import annotations

MIN_LEVEL = 1
MAX_LEVEL = 3


def target_difficulty(avg_accuracy: float | None) -> int:
    """Pick the next exercise level from recent average intelligibility (0-100)."""

    if avg_accuracy is None:
        return MIN_LEVEL
    if avg_accuracy >= 90:
        return MAX_LEVEL
    if avg_accuracy >= 70:
        return 2
    return MIN_LEVEL
