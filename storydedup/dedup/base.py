"""Abstract base class and shared types for the detection stages."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum

from storydedup.core.config import DedupConfig, get_config
from storydedup.core.logger import get_logger
from storydedup.core.models import DetectionMethod, MatchConfig, Post
from storydedup.dedup.union_find import DisjointSet


class FailurePolicy(StrEnum):
    """What the detector does when a stage raises.

    FAIL_OPEN drops the stage's output: its posts continue unclaimed and
    end up unique. FAIL_CLOSED aborts the run.
    """

    FAIL_OPEN = "fail_open"
    FAIL_CLOSED = "fail_closed"


@dataclass(frozen=True, slots=True)
class StageContext:
    """Per-run values every stage may read."""

    issue_id: str
    config: MatchConfig


@dataclass
class CandidateGroup:
    """A group proposed by one stage, addressed by position in the batch.

    Attributes:
        method: Stage that formed the group.
        indices: Sorted batch positions of every post in the group.
        score: Group similarity in [0, 1].
        member_scores: Best similarity seen for each position.
        topic_signature: Short human-readable label.
        explanation: Why the posts were grouped.
        has_primary: False for historical groups, whose story was
            already told and keeps no representative.
    """

    method: DetectionMethod
    indices: list[int]
    score: float
    member_scores: dict[int, float] = field(default_factory=dict)
    topic_signature: str = ""
    explanation: str = ""
    has_primary: bool = True


# Pair scorer: returns a similarity in [0, 1] for a match, None otherwise.
PairScorer = Callable[[int, int], "float | None"]


class BaseMatcher(ABC):
    """Base class for detection stages.

    Subclasses implement ``match``, which only ever receives positions of
    posts no earlier stage has claimed.
    """

    method: DetectionMethod
    failure_policy: FailurePolicy = FailurePolicy.FAIL_OPEN

    def __init__(self, settings: DedupConfig | None = None) -> None:
        self._settings = settings or get_config().dedup
        self._logger = get_logger(type(self).__name__)

    @property
    def name(self) -> str:
        return self.method.value

    @abstractmethod
    def match(
        self,
        posts: list[Post],
        candidates: list[int],
        context: StageContext,
    ) -> list[CandidateGroup]:
        """Group the candidate posts.

        Args:
            posts: The full batch.
            candidates: Positions in ``posts`` still unclaimed.
            context: Issue id and run parameters.

        Returns:
            Disjoint groups over ``candidates``.
        """

    def _union_pairs(
        self,
        candidates: list[int],
        scorer: PairScorer,
    ) -> list[tuple[list[int], dict[int, float]]]:
        """Union every matching pair and return the resulting components.

        Compares all pairs once (O(n^2) on the candidate set) and merges
        matches through a disjoint set, so A~B and B~C groups A, B, C.

        Returns:
            ``(positions, member_scores)`` for each component of size >= 2.
        """
        forest = DisjointSet(len(candidates))
        best: dict[int, float] = {}
        for a in range(len(candidates)):
            for b in range(a + 1, len(candidates)):
                left, right = candidates[a], candidates[b]
                score = scorer(left, right)
                if score is None:
                    continue
                forest.union(a, b)
                best[left] = max(best.get(left, 0.0), score)
                best[right] = max(best.get(right, 0.0), score)

        components = []
        for members in forest.components(min_size=2):
            positions = sorted(candidates[m] for m in members)
            components.append((positions, {p: best[p] for p in positions}))
        return components
