"""
insight.py — Pydantic schemas for AI-generated SEO insights.

AnalysisInput   — what the client sends (summary of a finished SEO analysis)
Insights        — validated narrative recommendations
InsightResponse — POST /api/v1/ai/insights body, always carries the caller's
                  current quota so the dashboard can render its usage meter
"""

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field

from seolens.models.usage import Availability

Impact = Literal["High", "Medium", "Low"]


# ── Request ───────────────────────────────────────────────────────────────────

class AnalysisIssue(BaseModel):
    """One recommendation produced by the heuristic SEO analysis."""
    message: Optional[str] = None
    title: Optional[str] = None
    type: str = "warning"
    category: Optional[str] = None


class AnalysisInput(BaseModel):
    """Payload for POST /api/v1/ai/insights."""
    url: str = Field(min_length=1, max_length=2048)
    score: int = Field(ge=0, le=100)
    recommendations: list[AnalysisIssue] = Field(default_factory=list)
    page_speed_score: Optional[int] = Field(default=None, ge=0, le=100)
    word_count: int = Field(default=0, ge=0)
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None


# ── Insights ──────────────────────────────────────────────────────────────────

class PriorityAction(BaseModel):
    action: str
    impact: Impact
    timeframe: str
    reasoning: str


class ExpectedOutcomes(BaseModel):
    short_term: str
    long_term: str


class Insights(BaseModel):
    executive_summary: str
    priority_actions: list[PriorityAction]
    competitive_advantage: str
    expected_outcomes: ExpectedOutcomes
    industry_insights: str
    risk_assessment: Impact
    generated_at: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))
    confidence: float = Field(ge=0.0, le=1.0)
    fallback_generated: bool = False


# ── Response ──────────────────────────────────────────────────────────────────

class InsightResponse(BaseModel):
    success: bool
    insights: Optional[Insights] = None
    cached: bool = False
    fallback: bool = False
    error: Optional[str] = None
    availability: Availability
