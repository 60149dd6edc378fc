"""Duplicate-story detection stages and orchestrator.

Usage::

    from storydedup.dedup import build_detector
    result = build_detector().detect_duplicates(issue_id, posts)
    publishable = result.unique_posts
"""

from storydedup.dedup.base import BaseMatcher, CandidateGroup, FailurePolicy, StageContext
from storydedup.dedup.detector import DuplicateDetector, PostTracker, build_detector
from storydedup.dedup.exact import ExactMatcher
from storydedup.dedup.historical import HistoricalMatcher
from storydedup.dedup.normalizer import content_fingerprint, normalize, post_body
from storydedup.dedup.resolver import GroupResolver, ResolvedGroup, primary_sort_key
from storydedup.dedup.semantic import (
    ClaudeGroupingBackend,
    GroupingItem,
    SemanticGrouper,
    parse_grouping_json,
    validate_response,
)
from storydedup.dedup.similarity import SimilarityMetric, similarity
from storydedup.dedup.title import TitleSimilarityMatcher
from storydedup.dedup.union_find import DisjointSet

__all__ = [
    # Orchestration
    "DuplicateDetector",
    "PostTracker",
    "build_detector",
    "GroupResolver",
    "ResolvedGroup",
    "primary_sort_key",
    # Stages
    "BaseMatcher",
    "CandidateGroup",
    "FailurePolicy",
    "StageContext",
    "HistoricalMatcher",
    "ExactMatcher",
    "TitleSimilarityMatcher",
    "SemanticGrouper",
    "ClaudeGroupingBackend",
    "GroupingItem",
    "parse_grouping_json",
    "validate_response",
    # Text helpers
    "normalize",
    "post_body",
    "content_fingerprint",
    "similarity",
    "SimilarityMetric",
    "DisjointSet",
]
