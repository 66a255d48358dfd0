"""Exact cosine-similarity ranking."""

import math
from collections.abc import Iterable, Sequence

import structlog

from src.modules.vectorstore.exceptions import DimensionMismatchError
from src.modules.vectorstore.schemas import ChunkRecord, ScoredRecord

logger = structlog.get_logger()

DEFAULT_TOP_K = 3


def _unit_scaled(vector: Sequence[float]) -> list[float] | None:
    """Divide by the largest magnitude so squares and products stay finite.

    Cosine is scale invariant. Returns None for a zero vector.
    """
    peak = max(abs(x) for x in vector)
    if peak == 0.0:
        return None
    return [x / peak for x in vector]


def _norm(vector: Sequence[float]) -> float:
    return math.sqrt(math.fsum(x * x for x in vector))


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between two vectors.

    Returns 0.0 when either vector has zero norm or is empty. Vectors of
    different length cannot be compared: the mismatch is logged and 0.0 is
    returned instead of raising.

    Args:
        a: First vector.
        b: Second vector.

    Returns:
        Similarity in [-1, 1].
    """
    if len(a) != len(b):
        logger.warning(
            "similarity_dimension_mismatch",
            error=str(DimensionMismatchError(len(a), len(b))),
        )
        return 0.0
    if not a:
        return 0.0

    scaled_a = _unit_scaled(a)
    scaled_b = _unit_scaled(b)
    if scaled_a is None or scaled_b is None:
        return 0.0

    norm_a = _norm(scaled_a)
    norm_b = _norm(scaled_b)
    dot = math.fsum(x * y for x, y in zip(scaled_a, scaled_b, strict=True))
    similarity = dot / (norm_a * norm_b)
    if not math.isfinite(similarity):
        return 0.0
    # Clamp rounding drift so identical vectors never exceed 1
    return max(-1.0, min(1.0, similarity))


def _is_valid_query(query: Sequence[float]) -> bool:
    if not query:
        return False
    return all(
        not isinstance(x, bool) and isinstance(x, int | float) and math.isfinite(x)
        for x in query
    )


def rank_by_query(
    query: Sequence[float],
    records: Iterable[ChunkRecord],
    top_k: int = DEFAULT_TOP_K,
) -> list[ScoredRecord]:
    """Rank records by cosine similarity to a query vector.

    Records whose embedding length differs from the query are skipped.
    Ties keep the records' original order, so repeated calls on the same
    input return the same sequence.

    Args:
        query: Query embedding.
        records: Candidate records in insertion order.
        top_k: Maximum number of results.

    Returns:
        Up to top_k scored records, highest score first. Empty when there
        is nothing eligible or the query is invalid; never raises.
    """
    if top_k <= 0 or not _is_valid_query(query):
        if top_k > 0:
            logger.warning("similarity_invalid_query", query_length=len(query or []))
        return []

    dimensions = len(query)
    scored: list[ScoredRecord] = []
    skipped = 0

    for record in records:
        if len(record.embedding) != dimensions:
            skipped += 1
            continue
        scored.append(
            ScoredRecord(record=record, score=cosine_similarity(query, record.embedding))
        )

    if skipped:
        logger.debug(
            "similarity_records_skipped",
            reason="dimension_mismatch",
            skipped=skipped,
            query_dimensions=dimensions,
        )

    # list.sort is stable, including with reverse=True
    scored.sort(key=lambda item: item.score, reverse=True)
    return scored[:top_k]
