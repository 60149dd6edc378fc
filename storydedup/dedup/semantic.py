"""Stage 3: language-model grouping of the residual posts.

Posts are sent as ``{index, title, text}`` items and referenced only by
their 0-based position in the batch. Every index in the response is
untrusted: a group with an out-of-range, repeated or missing index is
dropped, and posts not placed in a valid group stay unique.
"""

from __future__ import annotations

import json
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Protocol

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StrictInt
from pydantic import ValidationError as PydanticValidationError
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from storydedup.core.claude_client import ClaudeClient
from storydedup.core.config import DedupConfig, SemanticSettings
from storydedup.core.exceptions import (
    GroupingResponseError,
    GroupingValidationError,
    StoryDedupError,
    TransientError,
)
from storydedup.core.logger import get_logger
from storydedup.core.models import ClaudeTask, DetectionMethod, Post
from storydedup.core.prompts import render_prompt
from storydedup.dedup.base import BaseMatcher, CandidateGroup, StageContext
from storydedup.dedup.normalizer import post_body

logger = get_logger(__name__)

# Backends outside the Claude client may raise the builtin transport errors.
_RETRYABLE = (TransientError, TimeoutError, ConnectionError)

SYSTEM_PROMPT = (
    "You are a newsletter editor who groups news posts that describe the same "
    "real-world story. You answer with JSON only."
)


@dataclass(frozen=True, slots=True)
class GroupingItem:
    """One post as sent to the grouping call."""

    index: int
    title: str
    text: str


class GroupingBackend(Protocol):
    """Black-box grouping capability returning the decoded JSON response."""

    def __call__(self, items: list[GroupingItem], strictness: float) -> Any: ...


class _GroupPayload(BaseModel):
    """Shape of one group in the response, before index checks."""

    model_config = ConfigDict(extra="ignore")

    primary_index: StrictInt = Field(
        validation_alias=AliasChoices("primary_index", "primary_article_index"),
    )
    duplicate_indices: list[StrictInt]
    topic_signature: str = ""
    explanation: str = Field(
        default="",
        validation_alias=AliasChoices("explanation", "similarity_explanation"),
    )
    confidence: Any = None


@dataclass(frozen=True, slots=True)
class ValidatedGroup:
    """A group whose indices passed every check, still batch-local."""

    primary: int
    duplicates: tuple[int, ...]
    topic_signature: str
    explanation: str
    confidence: float

    @property
    def indices(self) -> list[int]:
        return sorted((self.primary, *self.duplicates))


def parse_grouping_json(text: str) -> Any:
    """Decode a model reply, stripping markdown code fences if present.

    Raises:
        GroupingResponseError: If the reply is not valid JSON.
    """
    stripped = text.strip()
    if "```json" in stripped:
        start = stripped.find("```json") + 7
        stripped = stripped[start:stripped.find("```", start)].strip()
    elif "```" in stripped:
        start = stripped.find("```") + 3
        stripped = stripped[start:stripped.find("```", start)].strip()
    try:
        return json.loads(stripped)
    except json.JSONDecodeError as e:
        raise GroupingResponseError(
            "Grouping response is not valid JSON",
            {"error": str(e), "preview": text[:200]},
        ) from e


def _coerce_confidence(value: Any, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    if not 0.0 <= float(value) <= 1.0:
        return default
    return float(value)


def validate_group(
    payload: Any,
    batch_size: int,
    claimed: set[int],
    default_confidence: float,
) -> ValidatedGroup:
    """Check one response group against the batch.

    Args:
        payload: Raw group object from the response.
        batch_size: Number of items sent in the request.
        claimed: Indices already used by earlier valid groups.
        default_confidence: Score used when the model gives none.

    Raises:
        GroupingValidationError: On any malformed, out-of-range or
            repeated index.
    """
    if not isinstance(payload, dict):
        raise GroupingValidationError(
            "Group is not an object",
            {"type": type(payload).__name__},
        )
    try:
        group = _GroupPayload.model_validate(payload)
    except PydanticValidationError as e:
        raise GroupingValidationError(
            "Group is missing or mistypes a required field",
            {"errors": e.errors(include_url=False, include_input=False)},
        ) from e

    indices = [group.primary_index, *group.duplicate_indices]
    out_of_range = [i for i in indices if not 0 <= i < batch_size]
    if out_of_range:
        raise GroupingValidationError(
            "Group references an index outside the batch",
            {"indices": out_of_range, "batch_size": batch_size},
        )
    if len(set(indices)) != len(indices):
        raise GroupingValidationError("Group repeats an index", {"indices": indices})
    reused = sorted(set(indices) & claimed)
    if reused:
        raise GroupingValidationError(
            "Group reuses indices from an earlier group",
            {"indices": reused},
        )
    if not group.duplicate_indices:
        raise GroupingValidationError(
            "Group has no duplicates",
            {"primary_index": group.primary_index},
        )

    return ValidatedGroup(
        primary=group.primary_index,
        duplicates=tuple(group.duplicate_indices),
        topic_signature=group.topic_signature.strip(),
        explanation=group.explanation.strip(),
        confidence=_coerce_confidence(group.confidence, default_confidence),
    )


def validate_response(
    raw: Any,
    batch_size: int,
    default_confidence: float,
) -> list[ValidatedGroup]:
    """Validate a whole grouping response, dropping invalid groups.

    Raises:
        GroupingResponseError: If the top-level shape is unusable.
    """
    if not isinstance(raw, dict):
        raise GroupingResponseError(
            "Grouping response is not an object",
            {"type": type(raw).__name__},
        )
    payloads = raw.get("groups") or []
    if not isinstance(payloads, list):
        raise GroupingResponseError(
            "Grouping response 'groups' is not a list",
            {"type": type(payloads).__name__},
        )

    claimed: set[int] = set()
    valid: list[ValidatedGroup] = []
    for position, payload in enumerate(payloads):
        try:
            group = validate_group(payload, batch_size, claimed, default_confidence)
        except GroupingValidationError as e:
            logger.warning(
                "semantic_group_dropped",
                group_position=position,
                reason=e.message,
                details=e.details,
            )
            continue
        claimed.update(group.indices)
        valid.append(group)

    unique = raw.get("unique_indices", raw.get("unique_articles")) or []
    if isinstance(unique, list):
        conflicting = sorted(i for i in unique if isinstance(i, int) and i in claimed)
        if conflicting:
            logger.warning("semantic_unique_conflict", indices=conflicting)
    return valid


class ClaudeGroupingBackend:
    """Grouping backend that asks Claude through a rendered prompt.

    The client is created on first use, so a missing API key surfaces as
    a stage failure instead of an import-time error.
    """

    def __init__(
        self,
        client: ClaudeClient | None = None,
        template: str = "semantic_grouping.j2",
    ) -> None:
        self._client = client
        self._template = template
        self._lock = threading.Lock()

    def _get_client(self) -> ClaudeClient:
        with self._lock:
            if self._client is None:
                self._client = ClaudeClient()
            return self._client

    def __call__(self, items: list[GroupingItem], strictness: float) -> Any:
        prompt = render_prompt(self._template, items=items, strictness=strictness)
        response = self._get_client().generate(
            ClaudeTask.SEMANTIC_GROUPING,
            prompt,
            system_prompt=SYSTEM_PROMPT,
        )
        return parse_grouping_json(response.content)


class SemanticGrouper(BaseMatcher):
    """Group residual posts by story using a language model.

    Residual sets larger than ``batch_size`` are split and dispatched on
    a bounded thread pool. Results are merged in batch order so the
    outcome does not depend on completion order.

    Args:
        backend: Grouping capability. ``None`` disables the stage.
        settings: Dedup settings (defaults to the loaded config).
    """

    method = DetectionMethod.SEMANTIC

    def __init__(
        self,
        backend: GroupingBackend | None = None,
        settings: DedupConfig | None = None,
    ) -> None:
        super().__init__(settings)
        self._backend = backend
        self._semantic: SemanticSettings = self._settings.semantic

    def match(
        self,
        posts: list[Post],
        candidates: list[int],
        context: StageContext,
    ) -> list[CandidateGroup]:
        if self._backend is None or not self._semantic.enabled:
            self._logger.info("semantic_stage_skipped", reason="disabled")
            return []
        if len(candidates) < max(self._semantic.min_posts, 2):
            self._logger.info("semantic_stage_skipped", reason="too_few_posts", remaining=len(candidates))
            return []

        size = max(self._semantic.batch_size, 2)
        batches = [candidates[i:i + size] for i in range(0, len(candidates), size)]

        if len(batches) == 1:
            results = [self._group_batch(0, batches[0], posts, context)]
        else:
            workers = max(1, min(self._semantic.max_workers, len(batches)))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="semantic") as pool:
                results = list(pool.map(
                    lambda numbered: self._group_batch(numbered[0], numbered[1], posts, context),
                    enumerate(batches),
                ))

        groups = [group for batch_groups in results for group in batch_groups]
        self._logger.info(
            "semantic_stage_scanned",
            candidates=len(candidates),
            batches=len(batches),
            groups=len(groups),
        )
        return groups

    def _build_items(self, batch: list[int], posts: list[Post]) -> list[GroupingItem]:
        limit = self._semantic.max_text_chars
        items = []
        for local, idx in enumerate(batch):
            text = post_body(posts[idx])
            if len(text) > limit:
                text = text[: limit - 3] + "..."
            items.append(GroupingItem(index=local, title=posts[idx].title, text=text))
        return items

    def _group_batch(
        self,
        batch_no: int,
        batch: list[int],
        posts: list[Post],
        context: StageContext,
    ) -> list[CandidateGroup]:
        """Run one grouping call; any failure leaves the whole batch unique."""
        items = self._build_items(batch, posts)
        try:
            raw = self._call_with_retry(items, context.config.strictness_threshold)
            validated = validate_response(raw, len(batch), self._semantic.default_confidence)
        except _RETRYABLE as e:
            self._logger.error(
                "semantic_batch_failed_open",
                issue_id=context.issue_id,
                batch=batch_no,
                posts=len(batch),
                reason="transient",
                attempts=self._semantic.max_attempts,
                error=str(e),
            )
            return []
        except GroupingResponseError as e:
            self._logger.error(
                "semantic_batch_failed_open",
                issue_id=context.issue_id,
                batch=batch_no,
                posts=len(batch),
                reason="unparseable_response",
                error=str(e),
            )
            return []
        except StoryDedupError as e:
            self._logger.error(
                "semantic_batch_failed_open",
                issue_id=context.issue_id,
                batch=batch_no,
                posts=len(batch),
                reason=type(e).__name__,
                error=str(e),
            )
            return []
        except Exception as e:
            self._logger.error(
                "semantic_batch_failed_open",
                issue_id=context.issue_id,
                batch=batch_no,
                posts=len(batch),
                reason="unexpected_error",
                error=str(e),
                error_type=type(e).__name__,
            )
            return []

        return [self._to_candidate(group, batch) for group in validated]

    def _call_with_retry(self, items: list[GroupingItem], strictness: float) -> Any:
        retrying = Retrying(
            retry=retry_if_exception_type(_RETRYABLE),
            stop=stop_after_attempt(max(1, self._semantic.max_attempts)),
            wait=wait_exponential(
                multiplier=self._semantic.backoff_min_sec,
                min=self._semantic.backoff_min_sec,
                max=self._semantic.backoff_max_sec,
            ),
            before_sleep=self._log_retry,
            reraise=True,
        )
        return retrying(self._backend, items, strictness)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        self._logger.warning(
            "semantic_call_retrying",
            attempt=retry_state.attempt_number,
            error=str(error),
        )

    def _to_candidate(self, group: ValidatedGroup, batch: list[int]) -> CandidateGroup:
        positions = sorted(batch[i] for i in group.indices)
        return CandidateGroup(
            method=self.method,
            indices=positions,
            score=group.confidence,
            member_scores={p: group.confidence for p in positions},
            topic_signature=group.topic_signature or "Semantic match",
            explanation=group.explanation,
        )
