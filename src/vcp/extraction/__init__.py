"""Span extraction stages.

The pipeline entry point lives in ``vcp.extraction.pipeline`` (``run``) and
the interactive front door in ``vcp.extraction.session``; both depend on
``vcp.cache`` and are not re-exported here.
"""
from .canonical import CanonicalText, canonicalize
from .taxonomy import (
    TAXONOMY_VERSION,
    Category,
    Parent,
    get_parent,
    resolve_category,
)
from .types import LabelingPolicy, MergeStats, PromptContext, Span, SpanSource
from .closed_vocab import Lexicon, default_lexicon, load_vocab, match_closed_vocab
from .context_match import match_context
from .merger import MergeResult, repair_fragments, resolve_spans

__all__ = [
    # Records
    "Span",
    "SpanSource",
    "PromptContext",
    "LabelingPolicy",
    "MergeStats",
    # Canonicalizer
    "CanonicalText",
    "canonicalize",
    # Taxonomy
    "TAXONOMY_VERSION",
    "Category",
    "Parent",
    "get_parent",
    "resolve_category",
    # Candidate generation
    "Lexicon",
    "default_lexicon",
    "load_vocab",
    "match_closed_vocab",
    "match_context",
    # Merge
    "MergeResult",
    "repair_fragments",
    "resolve_spans",
]
