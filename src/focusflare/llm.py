import asyncio
from datetime import datetime, timedelta
import json
import re
from typing import Any, Sequence

import httpx
from loguru import logger
from pydantic import BaseModel, ValidationError

from focusflare import catalog, utils
from focusflare.config import OllamaConfig
from focusflare.entities import (
    Classification,
    ClassifierError,
    ClassifierMalformedResponse,
    ClassifierTimeout,
    ClassifierUnavailable,
    RawActivityEntry,
    SessionType,
)
from focusflare.modules.sessions.feedback import build_learned_context
from focusflare.protocols import FeedbackProvider


CODE_FENCE_REGEX = re.compile(r"```(?:json)?", re.IGNORECASE)
INVALID_TYPE_MAX_CONFIDENCE = 0.3

PROMPT_TEMPLATE = """You label blocks of desktop activity for a personal focus tracker.

Pick exactly one type:
- focused-work: producing something (coding, writing, design, spreadsheets, project tools), few switches, long stretches.
- research: reading or learning (documentation, Q&A sites, tutorials, papers, educational video).
- entertainment: leisure (social feeds, streaming, games, shopping, memes).
- break: short scattered activities, quick checks of mail or chat, idle or locked screen.
- unclear: nothing above fits with reasonable certainty.

Session started {start_time} and covers {duration} of active time.

Activities:
{activities}

Context: {context}

Answer with a single JSON object and nothing else:
{{"type": "<one of the five types>", "confidence": <0.0-1.0>, "reasoning": "<one sentence>"}}
"""


class LLMClassification(BaseModel):
    type: str
    confidence: float
    reasoning: str = "No reasoning provided"


def extract_json_object(text: str) -> str:
    cleaned = CODE_FENCE_REGEX.sub("", text).strip()
    start = cleaned.find("{")
    if start == -1:
        raise ClassifierMalformedResponse("No JSON object found in classifier response")

    depth = 0
    for index in range(start, len(cleaned)):
        char = cleaned[index]
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return cleaned[start : index + 1]

    raise ClassifierMalformedResponse("Unclosed JSON object in classifier response")


def parse_classification_response(text: str) -> Classification:
    raw = extract_json_object(text)
    try:
        parsed = LLMClassification.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as e:
        raise ClassifierMalformedResponse(f"Invalid classification payload: {e}") from e

    normalized = parsed.type.strip().lower()
    confidence = utils.clamp(parsed.confidence)
    try:
        session_type = SessionType(normalized)
    except ValueError:
        logger.warning("Classifier returned unknown type {!r}", parsed.type)
        return Classification(
            session_type=SessionType.UNCLEAR,
            confidence=min(confidence, INVALID_TYPE_MAX_CONFIDENCE),
            reasoning=f"Invalid type {parsed.type!r} - {parsed.reasoning}",
        )

    return Classification(
        session_type=session_type, confidence=confidence, reasoning=parsed.reasoning
    )


def group_consecutive(
    activities: Sequence[RawActivityEntry],
) -> list[list[RawActivityEntry]]:
    groups: list[list[RawActivityEntry]] = []
    for activity in activities:
        if groups and groups[-1][-1].app_name == activity.app_name:
            groups[-1].append(activity)
        else:
            groups.append([activity])
    return groups


def context_clues(activities: Sequence[RawActivityEntry]) -> list[str]:
    text = " ".join(f"{a.app_name} {a.window_title}" for a in activities).lower()
    clues: list[str] = []

    indicator_groups = (
        ("Work", catalog.DEVELOPMENT_TOOLS + catalog.PROFESSIONAL_SOFTWARE),
        ("Learning/Research", catalog.RESEARCH_PLATFORMS),
        ("Entertainment", catalog.ENTERTAINMENT_PLATFORMS),
        ("Break", (catalog.QUICK_TASK_INDICATORS, catalog.IDLE_INDICATORS)),
    )
    for label, groups in indicator_groups:
        found = [
            keyword
            for group in groups
            for keyword in utils.matched_keywords(text, group.keywords)
        ]
        if found:
            clues.append(f"{label} indicators: {', '.join(found[:3])}")

    extensions = utils.matched_keywords(text, catalog.CODE_EXTENSIONS)
    if extensions:
        clues.append(f"Code files: {', '.join(extensions)}")

    if "youtube" in text:
        if utils.count_matches(text, catalog.YOUTUBE_LEARNING_KEYWORDS):
            clues.append("Educational video content")
        elif utils.count_matches(text, catalog.YOUTUBE_MUSIC_KEYWORDS):
            clues.append("Background music")
        else:
            clues.append("General video consumption")

    return clues[:8]


def session_patterns(activities: Sequence[RawActivityEntry]) -> list[str]:
    patterns: list[str] = []
    average = sum((a.duration for a in activities), timedelta(0)) / len(activities)
    if average < timedelta(minutes=2):
        patterns.append(f"very short activities (avg {utils.human_delta(average)})")
    elif average > timedelta(minutes=15):
        patterns.append(f"sustained activities (avg {utils.human_delta(average)})")

    unique_apps = len({a.app_name for a in activities})
    if unique_apps == 1:
        patterns.append("single application focus")
    elif unique_apps / len(activities) > 0.7:
        patterns.append(
            f"frequent app switching ({unique_apps} apps in {len(activities)} activities)"
        )

    if any(
        "idle" in a.app_name.lower() or "idle" in a.window_title.lower()
        for a in activities
    ):
        patterns.append("system idle time detected")
    return patterns


def summarize_activities(activities: Sequence[RawActivityEntry]) -> str:
    if not activities:
        return "No activities recorded"

    unique_apps = len({a.app_name for a in activities})
    lines = [f"{len(activities)} activities across {unique_apps} application(s):"]
    for index, group in enumerate(group_consecutive(activities), start=1):
        total = sum((a.duration for a in group), timedelta(0))
        lines.append(
            f"{index}. {group[0].timestamp:%H:%M:%S}-{group[-1].end_time:%H:%M:%S} "
            f"({utils.human_delta(total)}) {group[0].app_name}"
        )
        titles = list(dict.fromkeys(a.window_title for a in group if a.window_title))
        if titles:
            lines.append(f"   Windows: {' | '.join(titles[:3])}")
        clues = context_clues(group)
        if clues:
            lines.append(f"   Context: {', '.join(clues)}")

    patterns = session_patterns(activities)
    if patterns:
        lines.append(f"Session patterns: {', '.join(patterns)}")
    return "\n".join(lines)


class OllamaClassifier:
    """Session classifier backed by a local Ollama server."""

    def __init__(
        self,
        config: OllamaConfig | None = None,
        feedback_provider: FeedbackProvider | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config or OllamaConfig()
        self.feedback_provider = feedback_provider
        self.transport = transport
        self.is_connected = False
        self.last_health_check: datetime | None = None

    def _client(self, timeout: timedelta) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=httpx.Timeout(timeout.total_seconds()),
            transport=self.transport,
        )

    def should_check_health(self) -> bool:
        if not self.is_connected or self.last_health_check is None:
            return True
        return (
            utils.utc_now() - self.last_health_check
            > self.config.health_check_interval
        )

    async def check_health(self) -> bool:
        model_family = self.config.model.split(":")[0]
        try:
            async with self._client(self.config.health_check_timeout) as client:
                response = await client.get("/api/tags")
            response.raise_for_status()
            models = response.json().get("models") or []
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Ollama health check failed: {}", e)
            self.is_connected = False
            return False

        self.is_connected = any(
            model_family in model.get("name", "") for model in models
        )
        self.last_health_check = utils.utc_now()
        if not self.is_connected:
            logger.warning("Ollama model {} is not available", self.config.model)
        return self.is_connected

    async def learned_context(self, activities: Sequence[RawActivityEntry]) -> str:
        if self.feedback_provider is None:
            return "No learned patterns available yet"
        try:
            feedback = await self.feedback_provider.get_recent_feedback(
                days=self.config.feedback_lookback_days,
                limit=self.config.feedback_limit,
            )
        except Exception:
            logger.exception("Failed to load user feedback for learned context")
            return "Failed to retrieve learned patterns"

        return build_learned_context(
            activities,
            feedback,
            threshold=self.config.feedback_similarity_threshold,
            limit=self.config.max_similar_corrections,
        )

    def build_prompt(
        self,
        activities: Sequence[RawActivityEntry],
        context_hint: str | None,
        learned_context: str,
    ) -> str:
        active_time = sum((a.duration for a in activities), timedelta(0))
        start_time = (
            utils.datetime_to_iso_8601(activities[0].timestamp)
            if activities
            else "unknown"
        )
        context = context_hint or "No additional context provided"
        return PROMPT_TEMPLATE.format(
            start_time=start_time,
            duration=utils.human_delta(active_time),
            activities=summarize_activities(activities),
            context=f"{context}\nLearned patterns: {learned_context}",
        )

    def request_body(self, prompt: str) -> dict[str, Any]:
        return {
            "model": self.config.model,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": self.config.temperature,
                "top_k": self.config.top_k,
                "top_p": self.config.top_p,
            },
        }

    async def generate(self, prompt: str) -> Classification:
        try:
            async with self._client(self.config.timeout) as client:
                response = await client.post(
                    "/api/generate", json=self.request_body(prompt)
                )
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise ClassifierTimeout(
                f"Ollama did not answer within {self.config.timeout}"
            ) from e
        except httpx.HTTPError as e:
            raise ClassifierUnavailable(f"Ollama request failed: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise ClassifierMalformedResponse("Ollama returned non-JSON body") from e

        if not isinstance(data, dict):
            raise ClassifierMalformedResponse("Ollama returned an unexpected body")
        if data.get("error"):
            raise ClassifierUnavailable(f"Ollama error: {data['error']}")

        return parse_classification_response(data.get("response") or "")

    async def classify(
        self,
        activities: Sequence[RawActivityEntry],
        context_hint: str | None = None,
    ) -> Classification:
        if self.should_check_health() and not await self.check_health():
            raise ClassifierUnavailable(
                "Ollama server is not available or the model is not loaded"
            )

        prompt = self.build_prompt(
            activities, context_hint, await self.learned_context(activities)
        )

        last_error: ClassifierError | None = None
        for attempt in range(1, self.config.max_retries + 1):
            try:
                return await self.generate(prompt)
            except ClassifierError as e:
                last_error = e
                logger.warning(
                    "Classification attempt {}/{} failed: {}",
                    attempt,
                    self.config.max_retries,
                    e,
                )
                if attempt < self.config.max_retries:
                    await asyncio.sleep(self.config.retry_delay.total_seconds())

        assert last_error is not None
        raise last_error
