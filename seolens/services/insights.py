"""
insights.py — AI narrative recommendations for a finished SEO analysis.

HOW THE DATA FLOWS
──────────────────
1. Quota check (usage_limiter.check_availability). Blocked → no AI call.
2. Cache lookup. Answers are keyed coarsely (score bucket of 10 + whether
   there are issues) so similar pages share one answer; hits are free.
3. usage_limiter.increment_usage: the attempt is charged before the call,
   so a failing Gemini call still counts.
4. Gemini call with a compact JSON prompt. Any failure (quota, overload,
   unparsable answer) is replaced by generate_fallback_insights(), which
   only uses the local score.
5. Cache (24 h real / 6 h fallback), persist to `ai_insights` (best effort),
   and re-check availability so the response carries the new quota.
"""

import json
import logging
import math
import re
import time
from typing import Any, Callable, Optional

from cachetools import TLRUCache
from google.api_core import exceptions as google_exceptions

from seolens.ai.gemini_client import GeminiClient, gemini_client
from seolens.core.database import get_db
from seolens.models.insight import (
    AnalysisInput,
    ExpectedOutcomes,
    InsightResponse,
    Insights,
    PriorityAction,
)
from seolens.services.usage_limiter import UsageLimiter, usage_limiter
from seolens.services.usage_store import UsageStore

logger = logging.getLogger(__name__)

_AI_CACHE_SECONDS = 24 * 60 * 60
_FALLBACK_CACHE_SECONDS = 6 * 60 * 60
_MAX_PRIORITY_ACTIONS = 4

GENERATION_FAILED = "Failed to generate AI insights"

_PROMPT = """\
SEO Score: {score}/100
Issues: {issues}
Speed: {speed}/100, Words: {words}

Return JSON:
{{
"executiveSummary": "Brief 2-sentence summary",
"priorityActions": [{{"action": "Top action", "impact": "High", "timeframe": "1-2 weeks", "reasoning": "Why"}}],
"competitiveAdvantage": "Brief advantage statement",
"expectedOutcomes": {{"shortTerm": "1-3 months result", "longTerm": "6-12 months result"}},
"industryInsights": "Key trend",
"riskAssessment": "Low"
}}

Be concise."""


# ── Prompt / parsing ──────────────────────────────────────────────────────────

def build_prompt(analysis: AnalysisInput) -> str:
    """Token-lean prompt: score, top three issues, speed and word count."""
    issues = ", ".join(
        r.message or r.title or "" for r in analysis.recommendations[:3]
    ) or "None"
    speed = analysis.page_speed_score if analysis.page_speed_score is not None else "N/A"
    return _PROMPT.format(
        score=analysis.score, issues=issues, speed=speed, words=analysis.word_count
    )


def parse_insights_json(raw: str) -> Optional[dict]:
    """Extract the JSON object from a model answer (tolerates ``` fences)."""
    m = re.search(r"\{[\s\S]*\}", raw)
    if not m:
        return None
    try:
        data = json.loads(m.group())
    except (json.JSONDecodeError, ValueError):
        return None
    return data if isinstance(data, dict) else None


def normalize_impact(value: Any) -> str:
    """Map free text like "Medium risk" onto High / Medium / Low."""
    if not value:
        return "Low"
    text = str(value).lower()
    if "high" in text:
        return "High"
    if "medium" in text:
        return "Medium"
    return "Low"


def calculate_confidence(analysis: AnalysisInput) -> float:
    """0.7 base, +0.1 each for title, description and >300 words; max 0.95."""
    confidence = 0.7
    if analysis.meta_title:
        confidence += 0.1
    if analysis.meta_description:
        confidence += 0.1
    if analysis.word_count > 300:
        confidence += 0.1
    return round(min(0.95, confidence), 2)


def cache_key(analysis: AnalysisInput) -> str:
    score_range = (analysis.score // 10) * 10
    has_issues = "issues" if analysis.recommendations else "clean"
    return f"ai_{score_range}_{has_issues}"


def _priority_action(raw: Any) -> Optional[PriorityAction]:
    if not isinstance(raw, dict) or not raw.get("action"):
        return None
    return PriorityAction(
        action=str(raw["action"]),
        impact=normalize_impact(raw.get("impact")),
        timeframe=str(raw.get("timeframe") or "1-2 weeks"),
        reasoning=str(raw.get("reasoning") or "Recommended by AI analysis"),
    )


def validate_insights(data: dict, analysis: AnalysisInput) -> Insights:
    """Fill every field the dashboard needs, whatever the model left out."""
    actions = []
    if isinstance(data.get("priorityActions"), list):
        for raw in data["priorityActions"][:_MAX_PRIORITY_ACTIONS]:
            action = _priority_action(raw)
            if action:
                actions.append(action)
    if not actions:
        actions = [
            PriorityAction(
                action="Review SEO fundamentals",
                impact="Medium",
                timeframe="1-2 weeks",
                reasoning="Foundation optimization needed",
            )
        ]

    outcomes = data.get("expectedOutcomes")
    if not isinstance(outcomes, dict):
        outcomes = {}

    return Insights(
        executive_summary=str(data.get("executiveSummary") or "AI analysis completed successfully."),
        priority_actions=actions,
        competitive_advantage=str(
            data.get("competitiveAdvantage") or "Improved search visibility and user experience."
        ),
        expected_outcomes=ExpectedOutcomes(
            short_term=str(outcomes.get("shortTerm") or "Initial SEO improvements"),
            long_term=str(outcomes.get("longTerm") or "Sustained organic growth"),
        ),
        industry_insights=str(
            data.get("industryInsights")
            or "Focus on mobile-first optimization and Core Web Vitals."
        ),
        risk_assessment=normalize_impact(data.get("riskAssessment")),
        confidence=calculate_confidence(analysis),
    )


# ── Fallback ──────────────────────────────────────────────────────────────────

def _action(action: str, impact: str, timeframe: str, reasoning: str) -> PriorityAction:
    return PriorityAction(action=action, impact=impact, timeframe=timeframe, reasoning=reasoning)


def generate_fallback_insights(analysis: AnalysisInput) -> Insights:
    """Deterministic insights from the score alone, used when Gemini fails."""
    score = analysis.score

    if score < 50:
        summary = (
            "Your website has significant SEO opportunities that could dramatically improve "
            "search visibility. Focus on fundamental optimizations first for maximum impact."
        )
        actions = [
            _action("Optimize page titles and meta descriptions", "High", "1-2 weeks",
                    "Basic meta optimizations provide immediate search engine clarity"),
            _action("Improve page loading speed", "High", "2-3 weeks",
                    "Core Web Vitals directly impact rankings and user experience"),
            _action("Add structured data markup", "Medium", "1-2 weeks",
                    "Enhanced search result appearance drives higher click-through rates"),
        ]
        advantage = (
            "Implementing these foundational SEO improvements will help you catch up to "
            "competitors and establish a strong search presence."
        )
    elif score < 75:
        summary = (
            "Your website has solid SEO foundations with room for strategic improvements. "
            "Focus on advanced optimizations to outperform competitors."
        )
        actions = [
            _action("Enhance content quality and depth", "High", "2-4 weeks",
                    "Comprehensive content builds topical authority and user engagement"),
            _action("Optimize for featured snippets", "Medium", "1-3 weeks",
                    "Position zero captures more visibility and traffic"),
            _action("Improve internal linking structure", "Medium", "1-2 weeks",
                    "Strategic linking distributes page authority and improves crawlability"),
        ]
        advantage = (
            "These strategic optimizations will help you surpass competitors who focus only "
            "on basic SEO fundamentals."
        )
    else:
        summary = (
            "Your website demonstrates strong SEO performance. Focus on advanced tactics and "
            "continuous optimization to maintain your competitive edge."
        )
        actions = [
            _action("Implement advanced schema markup", "Medium", "1-2 weeks",
                    "Rich snippets enhance search appearance and click-through rates"),
            _action("Optimize for voice search queries", "Medium", "2-3 weeks",
                    "Voice search optimization captures emerging search behaviors"),
            _action("Monitor and optimize Core Web Vitals", "High", "Ongoing",
                    "Maintaining excellent page experience is crucial for sustained rankings"),
        ]
        advantage = (
            "Your strong SEO foundation allows you to focus on cutting-edge optimizations "
            "that most competitors haven't implemented."
        )

    return Insights(
        executive_summary=summary,
        priority_actions=actions,
        competitive_advantage=advantage,
        expected_outcomes=ExpectedOutcomes(
            short_term="Improved search rankings and organic traffic within 1-3 months",
            long_term="Sustained organic growth and market share expansion over 6-12 months",
        ),
        industry_insights=(
            "Focus on E-E-A-T (Experience, Expertise, Authoritativeness, Trustworthiness) "
            "and user-first content strategy for long-term SEO success."
        ),
        risk_assessment="Low",
        confidence=0.85,
        fallback_generated=True,
    )


def _cache_ttu(_key: str, insights: Insights, now: float) -> float:
    ttl = _FALLBACK_CACHE_SECONDS if insights.fallback_generated else _AI_CACHE_SECONDS
    return now + ttl


# ── Service ───────────────────────────────────────────────────────────────────

class InsightService:
    """Quota-aware orchestration around the Gemini collaborator."""

    def __init__(
        self,
        limiter: UsageLimiter,
        client: GeminiClient,
        db_provider: Callable = get_db,
        cache: Optional[TLRUCache] = None,
    ) -> None:
        self.limiter = limiter
        self.client = client
        self._db_provider = db_provider
        self._cache = cache if cache is not None else TLRUCache(maxsize=256, ttu=_cache_ttu)

    def clear_cache(self) -> None:
        self._cache.clear()

    async def generate(
        self, analysis: AnalysisInput, user_id: Optional[str], ip_address: Optional[str]
    ) -> InsightResponse:
        try:
            availability = await self.limiter.check_availability(user_id, ip_address)
            if not availability.available:
                return InsightResponse(
                    success=False,
                    error=availability.reason,
                    fallback=True,
                    availability=availability,
                )

            key = cache_key(analysis)
            cached = self._cache.get(key)
            if cached is not None:
                logger.info("AI insights cache hit (%s)", key)
                return InsightResponse(
                    success=True, insights=cached, cached=True, availability=availability
                )

            await self._charge(user_id, ip_address)

            started = time.perf_counter()
            insights = await self.call_model(analysis)
            elapsed_ms = int((time.perf_counter() - started) * 1000)

            if insights.fallback_generated:
                logger.info("Using fallback insights due to AI service unavailability")

            self._cache[key] = insights
            await self.store_insights(analysis, insights, user_id, elapsed_ms)

            return InsightResponse(
                success=True,
                insights=insights,
                fallback=insights.fallback_generated,
                availability=await self.limiter.check_availability(user_id, ip_address),
            )
        except Exception as exc:
            logger.error("AI insights generation error: %s", exc, exc_info=True)
            return InsightResponse(
                success=False,
                error=GENERATION_FAILED,
                fallback=True,
                availability=await self.limiter.check_availability(user_id, ip_address),
            )

    async def _charge(self, user_id: Optional[str], ip_address: Optional[str]) -> None:
        """Record the attempt. Under fail open an unrecordable attempt still proceeds."""
        try:
            await self.limiter.increment_usage(user_id, ip_address)
        except Exception as exc:
            if not self.limiter.config.fail_open:
                raise
            logger.warning("AI usage not recorded, continuing (fail open): %s", exc)

    async def call_model(self, analysis: AnalysisInput) -> Insights:
        prompt = build_prompt(analysis)
        logger.info(
            "AI prompt length: %d characters (est. %d tokens)",
            len(prompt), math.ceil(len(prompt) / 4),
        )

        try:
            raw = await self.client.generate(prompt, response_key="seo_insights")
        except google_exceptions.ResourceExhausted as exc:
            logger.warning("Gemini API quota exceeded: %s", exc)
            return generate_fallback_insights(analysis)
        except google_exceptions.ServiceUnavailable as exc:
            logger.warning("Gemini API service overloaded: %s", exc)
            return generate_fallback_insights(analysis)
        except Exception as exc:
            logger.error("Gemini API call error: %s", exc)
            return generate_fallback_insights(analysis)

        logger.info(
            "AI response length: %d characters (est. %d tokens)",
            len(raw), math.ceil(len(raw) / 4),
        )
        data = parse_insights_json(raw)
        if data is None:
            logger.warning("Gemini returned no JSON object, using fallback insights")
            return generate_fallback_insights(analysis)
        return validate_insights(data, analysis)

    async def store_insights(
        self,
        analysis: AnalysisInput,
        insights: Insights,
        user_id: Optional[str],
        processing_ms: int,
    ) -> None:
        """Persist to `ai_insights`. Never raises; storage is best effort."""
        db = self._db_provider()
        if db is None:
            logger.debug("No database, skipping insight storage")
            return

        payload = insights.model_dump(mode="json")
        doc = {
            "url": analysis.url,
            "score": analysis.score,
            "user_id": user_id,
            "insights": payload,
            "confidence": insights.confidence,
            "model_used": "fallback" if insights.fallback_generated else self.client.model_name,
            "fallback": insights.fallback_generated,
            "processing_time_ms": processing_ms,
            "tokens_used": {
                "input": math.ceil(len(build_prompt(analysis)) / 4),
                "output": math.ceil(len(json.dumps(payload)) / 4),
            },
            "created_at": self.limiter.now(),
        }
        try:
            await UsageStore(db).insert_insight(doc)
        except Exception as exc:
            logger.error("Failed to store AI insights: %s", exc)


# Module-level singleton: routes use this
insight_service = InsightService(usage_limiter, gemini_client)
