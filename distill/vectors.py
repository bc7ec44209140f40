"""Vector arithmetic for embedding vectors: distances, products and scaling."""

from __future__ import annotations

import math
import sys
from collections.abc import Sequence

MAX_COSINE_DISTANCE = 2.0

Vector = Sequence[float]


def cosine_distance(a: Vector, b: Vector) -> float:
    """Return the cosine distance in [0, 2]: 0 for identical, 2 for opposite.

    Vectors of different lengths are compared over the shorter length. Empty
    or zero-magnitude input gives the maximum distance.
    """
    if len(a) == 0 or len(b) == 0:
        return MAX_COSINE_DISTANCE

    dot = mag_a = mag_b = 0.0
    for x, y in zip(a, b):
        x, y = float(x), float(y)
        dot += x * y
        mag_a += x * x
        mag_b += y * y

    denom = math.sqrt(mag_a * mag_b)
    if denom == 0:
        return MAX_COSINE_DISTANCE

    similarity = max(-1.0, min(1.0, dot / denom))
    return 1.0 - similarity


def cosine_similarity(a: Vector, b: Vector) -> float:
    """Return the cosine similarity in [-1, 1]: 1 for identical, -1 for opposite."""
    return 1.0 - cosine_distance(a, b)


def euclidean_distance(a: Vector, b: Vector) -> float:
    """Return the squared L2 distance; the largest float for mismatched or empty input."""
    if len(a) != len(b) or len(a) == 0:
        return sys.float_info.max
    return sum((float(x) - float(y)) ** 2 for x, y in zip(a, b))


def dot_product(a: Vector, b: Vector) -> float:
    """Return the inner product; 0 for mismatched or empty input."""
    if len(a) != len(b) or len(a) == 0:
        return 0.0
    return sum(float(x) * float(y) for x, y in zip(a, b))


def normalize(v: Vector) -> list[float]:
    """Return ``v`` scaled to unit length; zero or empty vectors come back unchanged."""
    if len(v) == 0:
        return []
    magnitude = math.sqrt(dot_product(v, v))
    if magnitude == 0:
        return [float(x) for x in v]
    inverse = 1.0 / magnitude
    return [float(x) * inverse for x in v]


def add_vectors(a: Vector, b: Vector) -> list[float]:
    """Return the element-wise sum over the shorter of the two lengths."""
    return [float(x) + float(y) for x, y in zip(a, b)]


def scale_vector(v: Vector, scalar: float) -> list[float]:
    """Return every element of ``v`` multiplied by ``scalar``."""
    return [float(x) * scalar for x in v]


def mean_vector(vectors: Sequence[Vector], dim: int) -> list[float]:
    """Return the element-wise mean of ``vectors`` as a vector of length ``dim``.

    Shorter vectors contribute only to the positions they have; longer ones
    are cut to ``dim``. With no vectors the result is all zeros.
    """
    if dim <= 0:
        return []
    totals = [0.0] * dim
    if len(vectors) == 0:
        return totals
    for vector in vectors:
        for i, value in enumerate(vector[:dim]):
            totals[i] += float(value)
    inverse = 1.0 / len(vectors)
    return [total * inverse for total in totals]