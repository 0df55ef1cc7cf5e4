"""Deterministic user bucketing for feature flags and A/B experiments.

A (user id, experiment key) pair always maps to the same bucket in [0, 99],
so a user lands in the same variant on every server and every request, and
browser clients running the same hash agree with the server.
"""

from typing import Optional, Sequence

CONTROL = "control"
TREATMENT = "treatment"

BUCKET_COUNT = 100


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def hash_assignment(user_id: str, experiment_key: str) -> int:
    """Map a user and an experiment key to a stable bucket in [0, 99].

    Rolling ``hash * 31 + unit`` over the concatenated string, wrapped to a
    signed 32-bit integer at each step. Characters are consumed as UTF-16 code
    units so that ids outside the BMP hash the same as they do in JavaScript;
    lone surrogates are hashed as the code units they are.
    """
    combined = (user_id + experiment_key).encode("utf-16-le", "surrogatepass")

    value = 0
    for i in range(0, len(combined), 2):
        unit = combined[i] | (combined[i + 1] << 8)
        value = _to_int32((value << 5) - value + unit)

    return abs(value) % BUCKET_COUNT


def resolve_variant(
    hash_value: int,
    variants: Sequence[str],
    weights: Optional[Sequence[float]] = None,
) -> str:
    """Pick the variant whose cumulative weight first exceeds ``hash_value``.

    For a 70/30 experiment (``weights=[70, 30]``), buckets 0-69 get the first
    variant and 70-99 the second. Without usable weights (missing, or not one
    per variant) every variant gets ``100 // len(variants)``; the last variant
    absorbs whatever that floor division leaves over.
    """
    if not variants:
        return CONTROL

    if weights is None or len(weights) != len(variants):
        weights = [BUCKET_COUNT // len(variants)] * len(variants)

    cumulative = 0
    for variant, weight in zip(variants, weights):
        cumulative += weight
        if hash_value < cumulative:
            return variant

    return variants[-1]


def rollout_variant(user_id: str, experiment_key: str, rollout_percentage: int) -> str:
    """Treatment for users whose bucket is below the rollout percentage."""
    return resolve_variant(
        hash_assignment(user_id, experiment_key),
        [TREATMENT, CONTROL],
        [rollout_percentage, BUCKET_COUNT - rollout_percentage],
    )
