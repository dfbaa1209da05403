"""Matching, filtering, labeling and merging of search entries."""

from .filters import InclusionFilter
from .labels import LabelResolver, ResolvedLabel
from .matcher import Matcher, MatchPlan
from .reconciler import EntryDraft, Reconciler, provenance_boost

__all__ = [
    "EntryDraft",
    "InclusionFilter",
    "LabelResolver",
    "MatchPlan",
    "Matcher",
    "Reconciler",
    "ResolvedLabel",
    "provenance_boost",
]
