"""Stage 1: near-verbatim republication within the current batch."""

from __future__ import annotations

from storydedup.core.models import DetectionMethod, Post
from storydedup.dedup.base import BaseMatcher, CandidateGroup, StageContext
from storydedup.dedup.normalizer import content_fingerprint, normalize
from storydedup.dedup.similarity import SimilarityMetric, similarity


class ExactMatcher(BaseMatcher):
    """Group posts whose normalized title (and description) are identical.

    A pair matches when its normalized titles are equal, when title and
    description are both near-identical, or when the article bodies hash
    to the same fingerprint.
    """

    method = DetectionMethod.EXACT

    def match(
        self,
        posts: list[Post],
        candidates: list[int],
        context: StageContext,
    ) -> list[CandidateGroup]:
        if len(candidates) < 2:
            return []

        exact = self._settings.exact
        metric = SimilarityMetric.parse(self._settings.similarity_metric)
        use_hash = self._settings.match_content_hash
        titles = {i: normalize(posts[i].title) for i in candidates}
        descriptions = {i: normalize(posts[i].description) for i in candidates}
        fingerprints = {i: content_fingerprint(posts[i]) if use_hash else "" for i in candidates}

        def score(a: int, b: int) -> float | None:
            if titles[a] and titles[a] == titles[b]:
                return 1.0
            if fingerprints[a] and fingerprints[a] == fingerprints[b]:
                return 1.0
            if not titles[a] or not titles[b]:
                return None
            title_score = similarity(titles[a], titles[b], metric)
            if title_score < exact.title_threshold:
                return None
            description_score = similarity(descriptions[a], descriptions[b], metric)
            if description_score < exact.description_threshold:
                return None
            return min(title_score, description_score)

        groups = []
        for positions, member_scores in self._union_pairs(candidates, score):
            anchor = posts[positions[0]]
            groups.append(CandidateGroup(
                method=self.method,
                indices=positions,
                score=min(member_scores.values()),
                member_scores=member_scores,
                topic_signature=f'Exact match: "{anchor.title[:80]}"',
                explanation=(
                    f"{len(positions)} posts carry identical or near-identical "
                    "title, description or article text"
                ),
            ))

        self._logger.debug(
            "exact_stage_scanned",
            candidates=len(candidates),
            groups=len(groups),
        )
        return groups
