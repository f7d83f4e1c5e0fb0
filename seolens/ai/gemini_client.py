"""
gemini_client.py — The one place the API talks to Google Gemini.

InsightService is the only caller: it sends a short JSON-shaped prompt and
parses the answer itself. This wrapper only picks the model, holds the
credentials and decides between canned and real answers:

  AI_MOCK_MODE=true   canned answers from _MOCK_RESPONSES, no network
                      (tests and local development)
  AI_MOCK_MODE=false  google-generativeai with GEMINI_API_KEY; without a key
                      is_configured is False and the usage limiter keeps the
                      AI feature switched off
"""

import logging
import os
from typing import Any

# protobuf's C extension is not built for every interpreter google-generativeai runs on
os.environ.setdefault("PROTOCOL_BUFFERS_PYTHON_IMPLEMENTATION", "python")

import google.generativeai as genai  # noqa: E402

from seolens.core.config import settings  # noqa: E402

logger = logging.getLogger(__name__)


# response_key → canned answer
_MOCK_RESPONSES: dict[str, str] = {
    "default": "[MOCK] Gemini is in mock mode (AI_MOCK_MODE=true); no API call was made.",
    "seo_insights": (
        "```json\n"
        '{"executiveSummary": "[MOCK] The page has a workable SEO baseline. '
        'Fixing the listed issues should lift visibility within a quarter.", '
        '"priorityActions": ['
        '{"action": "Rewrite the title tag around the primary keyword", "impact": "High", '
        '"timeframe": "1-2 weeks", "reasoning": "Titles are the strongest on-page relevance signal"}, '
        '{"action": "Compress and lazy-load images", "impact": "Medium", '
        '"timeframe": "1 week", "reasoning": "Faster loads improve Core Web Vitals"}'
        "], "
        '"competitiveAdvantage": "Cleaner metadata than most pages in the niche.", '
        '"expectedOutcomes": {"shortTerm": "Higher click-through from existing rankings", '
        '"longTerm": "Steady organic traffic growth"}, '
        '"industryInsights": "Search engines keep weighting page experience more heavily.", '
        '"riskAssessment": "Low risk"}\n'
        "```"
    ),
}


class GeminiClient:
    """Mock-or-real text generation. Use the `gemini_client` singleton."""

    def __init__(self) -> None:
        self.mock_mode = settings.ai_mock_mode
        self.model_name = settings.gemini_model
        self._model = None

        if self.mock_mode:
            self.is_configured = True
            logger.info("Gemini client in MOCK mode")
        elif settings.gemini_api_key:
            genai.configure(api_key=settings.gemini_api_key)
            self._model = genai.GenerativeModel(self.model_name)
            self.is_configured = True
            logger.info("Gemini client ready (model: %s)", self.model_name)
        else:
            self.is_configured = False
            logger.warning(
                "AI_MOCK_MODE=false but GEMINI_API_KEY is empty; AI insights stay disabled"
            )

    async def generate(self, prompt: str, response_key: str = "default", **options: Any) -> str:
        """
        Text answer for *prompt*.

        In mock mode *response_key* selects the canned answer (unknown keys
        get "default"); in real mode it is ignored and *options* go to
        generate_content_async(). SDK errors such as
        google.api_core.exceptions.ResourceExhausted propagate so the caller
        can fall back.
        """
        if self.mock_mode:
            return _MOCK_RESPONSES.get(response_key, _MOCK_RESPONSES["default"])
        if self._model is None:
            raise RuntimeError("Gemini is not configured (GEMINI_API_KEY missing)")

        try:
            response = await self._model.generate_content_async(prompt, **options)
        except Exception as exc:
            logger.error("Gemini call failed (model=%s): %s", self.model_name, exc)
            raise
        return response.text


gemini_client = GeminiClient()
