"""Stage 2: fuzzy title similarity within the current batch."""

from __future__ import annotations

from storydedup.core.models import DetectionMethod, Post
from storydedup.dedup.base import BaseMatcher, CandidateGroup, StageContext
from storydedup.dedup.normalizer import normalize
from storydedup.dedup.similarity import SimilarityMetric, similarity


class TitleSimilarityMatcher(BaseMatcher):
    """Group posts whose titles score at or above the strictness threshold.

    With ``match_descriptions`` enabled, two non-empty descriptions at or
    above the threshold also make a match.
    """

    method = DetectionMethod.TITLE

    def match(
        self,
        posts: list[Post],
        candidates: list[int],
        context: StageContext,
    ) -> list[CandidateGroup]:
        if len(candidates) < 2:
            return []

        threshold = context.config.strictness_threshold
        use_descriptions = context.config.match_descriptions
        metric = SimilarityMetric.parse(self._settings.similarity_metric)
        titles = {i: normalize(posts[i].title) for i in candidates}
        descriptions = {i: normalize(posts[i].description) for i in candidates}

        def score(a: int, b: int) -> float | None:
            if titles[a] and titles[b]:
                title_score = similarity(titles[a], titles[b], metric)
                if title_score >= threshold:
                    return title_score
            if use_descriptions and descriptions[a] and descriptions[b]:
                description_score = similarity(descriptions[a], descriptions[b], metric)
                if description_score >= threshold:
                    return description_score
            return None

        groups = []
        for positions, member_scores in self._union_pairs(candidates, score):
            anchor = posts[positions[0]]
            groups.append(CandidateGroup(
                method=self.method,
                indices=positions,
                score=min(member_scores.values()),
                member_scores=member_scores,
                topic_signature=f'Title match: "{anchor.title[:80]}"',
                explanation=(
                    f"Titles are at least {round(threshold * 100)}% similar "
                    f"({metric.value} similarity)"
                ),
            ))

        self._logger.debug(
            "title_stage_scanned",
            candidates=len(candidates),
            threshold=threshold,
            groups=len(groups),
        )
        return groups
