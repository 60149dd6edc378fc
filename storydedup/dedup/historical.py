"""Stage 0: posts that retell a story already sent in a recent issue."""

from __future__ import annotations

from typing import Protocol

from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from storydedup.core.config import DedupConfig, RetryConfig, get_config
from storydedup.core.exceptions import PersistenceError, TransientError
from storydedup.core.models import DetectionMethod, Post
from storydedup.dedup.base import BaseMatcher, CandidateGroup, StageContext
from storydedup.dedup.normalizer import content_fingerprint, normalize
from storydedup.dedup.similarity import SimilarityMetric, similarity


class HistoricalSource(Protocol):
    """Supplies posts of issues sent within the lookback window."""

    def __call__(self, lookback_days: int, exclude_issue_id: str) -> list[Post]: ...


class HistoricalMatcher(BaseMatcher):
    """Match current posts against posts from already-sent issues.

    Every matched current post becomes a duplicate. Groups collect the
    current posts that matched the same historical post and have no
    primary, since historical posts never represent the current issue.

    Args:
        fetch_historical_posts: Lookback query. ``None`` disables the stage.
        settings: Dedup settings (defaults to the loaded config).
        retry: Retry policy for transient fetch failures.
    """

    method = DetectionMethod.HISTORICAL

    def __init__(
        self,
        fetch_historical_posts: HistoricalSource | None = None,
        settings: DedupConfig | None = None,
        retry: RetryConfig | None = None,
    ) -> None:
        super().__init__(settings)
        self._fetch = fetch_historical_posts
        self._retry = retry or get_config().retry

    def match(
        self,
        posts: list[Post],
        candidates: list[int],
        context: StageContext,
    ) -> list[CandidateGroup]:
        lookback = context.config.historical_lookback_days
        if self._fetch is None:
            self._logger.info("historical_stage_skipped", reason="disabled")
            return []
        if not candidates:
            self._logger.info("historical_stage_skipped", reason="no_candidates")
            return []
        if lookback == 0:
            self._logger.warning(
                "historical_stage_skipped",
                issue_id=context.issue_id,
                reason="empty_window",
                lookback_days=lookback,
            )
            return []

        try:
            history = self._fetch_with_retry(lookback, context.issue_id)
        except Exception as e:
            self._logger.warning(
                "historical_fetch_failed",
                issue_id=context.issue_id,
                lookback_days=lookback,
                error=str(e),
                error_type=type(e).__name__,
            )
            return []

        history = sorted(
            (h for h in history if h.issue_id != context.issue_id),
            key=lambda h: h.id,
        )
        if not history:
            self._logger.warning(
                "historical_window_empty",
                issue_id=context.issue_id,
                lookback_days=lookback,
            )
            return []

        matches = self._match_against(posts, candidates, history, context)
        groups = self._build_groups(posts, matches, history, lookback)
        self._logger.info(
            "historical_stage_scanned",
            candidates=len(candidates),
            historical_posts=len(history),
            matched_posts=sum(len(g.indices) for g in groups),
        )
        return groups

    def _fetch_with_retry(self, lookback: int, issue_id: str) -> list[Post]:
        retrying = Retrying(
            retry=retry_if_exception_type((TransientError, PersistenceError)),
            stop=stop_after_attempt(max(1, self._retry.max_attempts)),
            wait=wait_exponential(
                min=self._retry.wait_exponential_min,
                max=self._retry.wait_exponential_max,
            ),
            reraise=True,
        )
        return retrying(self._fetch, lookback, issue_id)

    def _match_against(
        self,
        posts: list[Post],
        candidates: list[int],
        history: list[Post],
        context: StageContext,
    ) -> dict[int, tuple[int, float, str]]:
        """Find the best historical match for each candidate.

        Returns:
            Candidate position -> (history position, score, reason).
        """
        threshold = context.config.strictness_threshold
        use_descriptions = context.config.match_descriptions
        use_hash = self._settings.match_content_hash
        metric = SimilarityMetric.parse(self._settings.similarity_metric)

        past = [
            (normalize(h.title), normalize(h.description), content_fingerprint(h) if use_hash else "")
            for h in history
        ]

        matches: dict[int, tuple[int, float, str]] = {}
        for idx in candidates:
            post = posts[idx]
            title = normalize(post.title)
            description = normalize(post.description)
            fingerprint = content_fingerprint(post) if use_hash else ""

            best: tuple[int, float, str] | None = None
            for h_idx, (h_title, h_description, h_fingerprint) in enumerate(past):
                found: tuple[float, str] | None = None
                if title and title == h_title:
                    found = (1.0, "identical title")
                elif fingerprint and fingerprint == h_fingerprint:
                    found = (1.0, "identical article text")
                else:
                    if title and h_title:
                        score = similarity(title, h_title, metric)
                        if score >= threshold:
                            found = (score, "similar title")
                    if found is None and use_descriptions and description and h_description:
                        score = similarity(description, h_description, metric)
                        if score >= threshold:
                            found = (score, "similar description")
                if found is not None and (best is None or found[0] > best[1]):
                    best = (h_idx, found[0], found[1])
            if best is not None:
                matches[idx] = best
        return matches

    def _build_groups(
        self,
        posts: list[Post],
        matches: dict[int, tuple[int, float, str]],
        history: list[Post],
        lookback: int,
    ) -> list[CandidateGroup]:
        by_history: dict[int, list[int]] = {}
        for idx, (h_idx, _, _) in matches.items():
            by_history.setdefault(h_idx, []).append(idx)

        groups = []
        for h_idx in sorted(by_history, key=lambda h: min(by_history[h])):
            positions = sorted(by_history[h_idx])
            past_post = history[h_idx]
            member_scores = {i: matches[i][1] for i in positions}
            reasons = sorted({matches[i][2] for i in positions})
            groups.append(CandidateGroup(
                method=self.method,
                indices=positions,
                score=min(member_scores.values()),
                member_scores=member_scores,
                topic_signature=f'Previously published: "{past_post.title[:80]}"',
                explanation=(
                    f"Already sent as post {past_post.id} in issue {past_post.issue_id} "
                    f"within the last {lookback} days ({', '.join(reasons)})"
                ),
                has_primary=False,
            ))
            for i in positions:
                self._logger.debug(
                    "historical_match",
                    post_id=posts[i].id,
                    historical_post_id=past_post.id,
                    score=round(member_scores[i], 3),
                )
        return groups
