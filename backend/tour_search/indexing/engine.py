"""Approximate field-weighted matching over the flattened search records."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np
from rapidfuzz import fuzz, process
from rapidfuzz.utils import default_process

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class EngineMatch:
    """Index of a matching record with its boosted score."""

    index: int
    score: float
    field: str


class FuzzyMatchingEngine:
    """Score queries against every searchable field with partial-ratio similarity.

    Each field column is compared with ``rapidfuzz.process.cdist`` into a
    similarity matrix; a record is kept when its best field similarity reaches
    ``1 - threshold`` and ranked by its best weighted similarity times its boost.
    """

    def __init__(
        self,
        records: Sequence[Mapping[str, str]],
        field_weights: Mapping[str, float],
        *,
        threshold: float = 0.4,
        boosts: Optional[Sequence[float]] = None,
    ) -> None:
        if boosts is not None and len(boosts) != len(records):
            raise ValueError("boost table must align with searchable records")
        self._fields: List[str] = list(field_weights)
        self._weights = np.array([field_weights[name] for name in self._fields], dtype=np.float64)
        self._threshold = threshold
        self._size = len(records)
        self._boosts = np.array(boosts if boosts is not None else [1.0] * self._size, dtype=np.float64)
        self._raw: Dict[str, List[str]] = {
            name: [str(record.get(name) or "").lower() for record in records] for name in self._fields
        }
        self._processed: Dict[str, List[str]] = {
            name: [default_process(value) for value in values] for name, values in self._raw.items()
        }

    def __len__(self) -> int:
        return self._size

    def similarity_matrix(self, query: str) -> np.ndarray:
        """Return a ``(fields, records)`` matrix of similarities in ``[0, 1]``."""

        matrix = np.zeros((len(self._fields), self._size), dtype=np.float64)
        processed = default_process(query)
        if not processed or self._size == 0:
            return matrix
        for row, name in enumerate(self._fields):
            scores = process.cdist([processed], self._processed[name], scorer=fuzz.partial_ratio)
            matrix[row] = np.asarray(scores[0], dtype=np.float64) / 100.0
        return matrix

    def search(
        self,
        query: str,
        *,
        require_substring: bool = False,
        limit: Optional[int] = None,
    ) -> List[EngineMatch]:
        """Return matching records ranked by boosted weighted similarity.

        Args:
            query: Raw user search term.
            require_substring: Keep only records containing ``query`` verbatim
                (case-insensitive) in some field.
            limit: Maximum number of matches to return.

        Returns:
            List[EngineMatch]: Matches ordered by descending score.
        """
        if self._size == 0 or not query.strip():
            return []
        matrix = self.similarity_matrix(query)
        best_similarity = matrix.max(axis=0)
        keep = best_similarity >= (1.0 - self._threshold)
        if require_substring:
            needle = query.strip().lower()
            contains = np.array(
                [any(needle in self._raw[name][index] for name in self._fields) for index in range(self._size)],
                dtype=bool,
            )
            keep &= contains
        weighted = matrix * self._weights[:, np.newaxis]
        best_field = weighted.argmax(axis=0)
        scores = weighted.max(axis=0) * self._boosts
        candidates = np.flatnonzero(keep)
        order = sorted(candidates.tolist(), key=lambda index: (-scores[index], index))
        if limit is not None:
            order = order[:limit]
        LOGGER.debug("Query %r matched %d of %d record(s)", query, len(candidates), self._size)
        return [
            EngineMatch(index=index, score=float(scores[index]), field=self._fields[int(best_field[index])])
            for index in order
        ]


__all__ = ["EngineMatch", "FuzzyMatchingEngine"]
