"""
Maiat — Optional trust summary.

A short natural-language analysis attached to trust reports when a Gemini
key is configured. Absent or failing backend means no summary.
"""
from typing import Optional

import httpx
import structlog

from maiat.models import Project, TrustScoreBreakdown

logger = structlog.get_logger()

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/gemini-2.0-flash:generateContent"


class TrustSummarizer:
    """Google Gemini client."""

    def __init__(self, api_key: str, timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def summarize(self, project: Project, breakdown: TrustScoreBreakdown) -> Optional[str]:
        if not self.enabled:
            return None
        prompt = (
            f"Analyze trust for {project.name} ({project.category.value}). "
            f"Trust score {breakdown.score}/100, average rating {project.average_rating:.1f}/5 "
            f"from {project.review_count} reviews. "
            f"Give 2-sentence analysis for an AI agent deciding whether to transact. Under 150 chars."
        )
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{GEMINI_URL}?key={self.api_key}",
                    headers={"Content-Type": "application/json"},
                    json={
                        "contents": [{"parts": [{"text": prompt}]}],
                        "generationConfig": {"maxOutputTokens": 100, "temperature": 0.3},
                    },
                )
                response.raise_for_status()
                data = response.json()
                return data["candidates"][0]["content"]["parts"][0]["text"].strip()
        except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as e:
            logger.warning("trust_summary_failed", project=project.slug, error=str(e) or type(e).__name__)
            return None
