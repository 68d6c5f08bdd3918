"""
Maiat — AI review quality probe.

Asks an OpenAI-compatible chat completions backend to rate a review's
authenticity. The reply must be a single JSON object; anything else, as
well as timeouts and HTTP errors, yields the neutral fallback verdict.
"""
import json
from typing import Any, Dict, Optional

import httpx
import structlog

from maiat.models import AIVerdict, Verdict

logger = structlog.get_logger()

FALLBACK_VERDICT = AIVerdict(score=50, verdict=Verdict.SUSPICIOUS, reasoning="fallback", fallback=True)

PROMPT_TEMPLATE = """You are a review authenticity verifier for a trust platform. Analyze this review and rate it.

Score 0-100 based on:
- Specificity (mentions concrete details, not generic praise)
- Consistency (rating matches the sentiment of the content)
- Authenticity (reads like real usage, not spam or AI filler)

Title: {title}
Content: {content}
Rating: {rating}/5
Category: {category}

Respond ONLY with JSON: {{"score": <number>, "verdict": "<authentic|suspicious|spam>", "reasoning": "<one sentence>"}}"""


def parse_verdict(text: str) -> Optional[AIVerdict]:
    """Strict parse of the backend reply. None if it is not exactly the expected object."""
    try:
        data = json.loads((text or "").strip())
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    score = data.get("score")
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        return None
    try:
        verdict = Verdict(str(data.get("verdict", "")).strip().lower())
    except ValueError:
        return None
    reasoning = data.get("reasoning")
    if not isinstance(reasoning, str):
        return None
    return AIVerdict(
        score=int(round(max(0, min(100, score)))),
        verdict=verdict,
        reasoning=reasoning.strip(),
    )


class ReviewQualityChecker:
    """OpenAI-compatible chat client scoring review text."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o-mini",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/") + "/chat/completions"
        self.model = model
        self.timeout = timeout
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def score_review(self, title: str, content: str, rating: int, category: str) -> AIVerdict:
        if not self.enabled:
            logger.info("ai_probe_not_configured")
            return FALLBACK_VERDICT

        prompt = PROMPT_TEMPLATE.format(
            title=title or "(none)", content=content, rating=rating, category=category,
        )
        try:
            text = await self._complete(prompt)
        except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as e:
            logger.warning("ai_probe_failed", error=str(e) or type(e).__name__)
            return FALLBACK_VERDICT

        verdict = parse_verdict(text)
        if verdict is None:
            logger.warning("ai_probe_unparseable", response=(text or "")[:200])
            return FALLBACK_VERDICT

        logger.info("ai_probe_scored", score=verdict.score, verdict=verdict.verdict.value)
        return verdict

    async def _complete(self, prompt: str) -> str:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(
                self.base_url,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json=self._payload(prompt),
            )
            response.raise_for_status()
            data = response.json()
            return data["choices"][0]["message"]["content"]

    def _payload(self, prompt: str) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": 200,
            "temperature": 0.1,
            "response_format": {"type": "json_object"},
        }
