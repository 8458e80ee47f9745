"""
Insight Narrative Providers

Turn a ClientMetrics bundle into a patient-journey report:

    {
        "sections": {stage: {"keyWins": [...], "recommendations": [...], "nextBestSteps": [...]}},
        "dataQuality": {"missingSources": [...], "dataGaps": [...], "anomalies": [...]},
        "lastUpdated": "<iso>",
        "provider": "llm" | "rule_based"
    }

Providers:
- LLMNarrativeProvider: prompts a language model (Anthropic or any
  OpenAI-compatible endpoint) with only the metric values that exist
- RuleBasedNarrativeProvider: fixed thresholds per metric, always succeeds

FallbackNarrativeChain tries providers in order; a ProviderFailure is logged
and the next provider is used.
"""
import json
import re
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from anthropic import Anthropic
from openai import OpenAI

from dental_vitals.services.aggregation import ClientMetrics, PeriodAggregate
from dental_vitals.utils.helpers import safe_divide, format_number
from dental_vitals.utils.retry import retry_sync
from dental_vitals.utils.logger import log


JOURNEY_STAGES = ("Awareness", "Research", "Consideration", "Decision", "Loyalty", "Growth")

SOURCE_LABELS = {
    "ga4": "GA4",
    "gsc": "GSC",
    "gbp": "GBP",
    "clarity": "Clarity",
    "pms": "PMS",
}

CONNECT_MESSAGES = {
    "ga4": "Connect Google Analytics 4 to track website engagement and conversions",
    "gsc": "Connect Google Search Console to track search visibility and keyword performance",
    "gbp": "Connect Google Business Profile to track local visibility, phone calls and reviews",
    "clarity": "Connect Microsoft Clarity to track user experience issues such as dead clicks",
    "pms": "Connect your practice management system (PMS) data to analyze referrals and production",
}

RULE_BASED = "rule_based"
LLM = "llm"


class ProviderFailure(Exception):
    """A narrative provider could not produce a usable report"""
    pass


def empty_sections() -> Dict[str, Dict[str, list]]:
    return {
        stage: {"keyWins": [], "recommendations": [], "nextBestSteps": []}
        for stage in JOURNEY_STAGES
    }


def _evidence(source: str, metric: str, value: str, comparison: str) -> Dict[str, str]:
    return {"source": source, "metric": metric, "value": value, "comparison": comparison}


def _trend_note(agg: PeriodAggregate) -> str:
    return f"{agg.change_percent}% ({agg.trend}) across the period"


class NarrativeProvider(ABC):
    """Produces an insight report from the metrics bundle"""

    name = "base"

    @abstractmethod
    def generate(self, metrics: ClientMetrics) -> Dict[str, Any]:
        """Return a report dict or raise ProviderFailure"""
        ...


# ---------------------------------------------------------------------------
# Rule-based narratives
# ---------------------------------------------------------------------------

class RuleBasedNarrativeProvider(NarrativeProvider):
    """
    Deterministic narrative from fixed per-metric thresholds.

    Every recommendation cites the literal value that triggered it. Sources
    missing from the bundle are listed in dataQuality and never cited.
    """

    name = RULE_BASED

    def generate(self, metrics: ClientMetrics) -> Dict[str, Any]:
        sections = empty_sections()

        if metrics.gsc is not None:
            self._awareness_search(sections["Awareness"], metrics.gsc)
        if metrics.gbp is not None:
            self._awareness_local(sections["Awareness"], metrics.gbp)
        if metrics.ga4 is not None:
            self._research(sections["Research"], metrics.ga4)
        if metrics.gbp is not None:
            self._consideration_reviews(sections["Consideration"], metrics.gbp)
        if metrics.clarity is not None:
            self._consideration_bounce(sections["Consideration"], metrics.clarity)
        self._decision(sections["Decision"], metrics)
        self._loyalty(sections["Loyalty"], metrics)
        if metrics.pms is not None:
            self._growth(sections["Growth"], metrics.pms)

        missing = metrics.missing_sources()
        anomalies = []
        for source in metrics.present_sources():
            anomalies.extend(metrics.get(source).warnings)

        return {
            "sections": sections,
            "dataQuality": {
                "missingSources": [SOURCE_LABELS[s] for s in missing],
                "dataGaps": [CONNECT_MESSAGES[s] for s in missing],
                "anomalies": anomalies,
            },
            "lastUpdated": datetime.utcnow().isoformat(),
            "provider": self.name,
        }

    # Awareness: search + local visibility

    def _awareness_search(self, section: dict, gsc: PeriodAggregate):
        impressions = gsc.value("impressions")
        position = gsc.value("position")

        if impressions > 1000:
            section["keyWins"].append({
                "text": f"Strong search visibility with {format_number(impressions)} impressions",
                "supportingEvidence": [
                    _evidence("GSC", "impressions", format_number(impressions), _trend_note(gsc))
                ],
            })
        if position > 5:
            section["recommendations"].append({
                "text": f"Improve search rankings from current position {position:.1f} to top 3",
                "supportingEvidence": [
                    _evidence("GSC", "average position", f"{position:.1f}", "target: top 3")
                ],
                "impact": "High",
                "timeframe": "4-6 weeks",
            })
            section["nextBestSteps"].append(
                "Optimize content for primary dental keywords to improve search rankings"
            )

    def _awareness_local(self, section: dict, gbp: PeriodAggregate):
        views = gbp.value("total_views")
        if views > 500:
            section["keyWins"].append({
                "text": f"Google Business Profile seen {format_number(views)} times this period",
                "supportingEvidence": [
                    _evidence("GBP", "profile views", format_number(views), _trend_note(gbp))
                ],
            })

    # Research: website engagement

    def _research(self, section: dict, ga4: PeriodAggregate):
        engagement = ga4.value("engagement_rate") * 100
        if engagement > 50:
            section["keyWins"].append({
                "text": f"Good website engagement with {engagement:.1f}% engagement rate",
                "supportingEvidence": [
                    _evidence("GA4", "engagement rate", f"{engagement:.1f}%", "above 50% benchmark")
                ],
            })
        else:
            section["recommendations"].append({
                "text": f"Improve website engagement from {engagement:.1f}% to 60%+ industry standard",
                "supportingEvidence": [
                    _evidence("GA4", "engagement rate", f"{engagement:.1f}%", "target: 60%+")
                ],
                "impact": "Medium",
                "timeframe": "3-4 weeks",
            })
            section["nextBestSteps"].append(
                "Review top landing pages for clear treatment information and calls to action"
            )

    # Consideration: trust signals

    def _consideration_reviews(self, section: dict, gbp: PeriodAggregate):
        rating = gbp.value("average_rating")
        reviews = gbp.value("total_reviews")
        if rating >= 4.5:
            section["keyWins"].append({
                "text": f"Excellent patient satisfaction with {rating:.1f}★ rating from {format_number(reviews)} reviews",
                "supportingEvidence": [
                    _evidence("GBP", "average rating", f"{rating:.1f}★", "above 4.5★ benchmark"),
                    _evidence("GBP", "total reviews", format_number(reviews), "all-time review count"),
                ],
            })
        else:
            section["recommendations"].append({
                "text": f"Boost review rating from {rating:.1f}★ to 4.5★+ for better local visibility",
                "supportingEvidence": [
                    _evidence("GBP", "average rating", f"{rating:.1f}★", "target: 4.5★+")
                ],
                "impact": "High",
                "timeframe": "2-3 weeks",
            })
            section["nextBestSteps"].append("Ask satisfied patients for a Google review after each visit")

    def _consideration_bounce(self, section: dict, clarity: PeriodAggregate):
        bounce = clarity.value("bounce_rate") * 100
        if bounce > 60:
            section["recommendations"].append({
                "text": f"Reduce website bounce rate from {bounce:.1f}% by improving page speed and first-screen content",
                "supportingEvidence": [
                    _evidence("Clarity", "bounce rate", f"{bounce:.1f}%", "target: below 60%")
                ],
                "impact": "Medium",
                "timeframe": "2-4 weeks",
            })

    # Decision: conversions

    def _decision(self, section: dict, metrics: ClientMetrics):
        if metrics.ga4 is not None and metrics.ga4.value("conversions") > 0:
            conversions = metrics.ga4.value("conversions")
            section["keyWins"].append({
                "text": f"{format_number(conversions)} conversions tracked this period",
                "supportingEvidence": [
                    _evidence("GA4", "conversions", format_number(conversions), _trend_note(metrics.ga4))
                ],
            })

        if metrics.gbp is not None and metrics.gbp.value("phone_calls") > 0:
            calls = metrics.gbp.value("phone_calls")
            section["keyWins"].append({
                "text": f"{format_number(calls)} phone calls from Google Business Profile",
                "supportingEvidence": [
                    _evidence("GBP", "phone calls", format_number(calls), "calls from profile")
                ],
            })

        if metrics.clarity is not None and metrics.clarity.value("dead_clicks") > 10:
            dead_clicks = metrics.clarity.value("dead_clicks")
            section["recommendations"].append({
                "text": f"Fix {format_number(dead_clicks)} dead clicks to improve user experience and conversions",
                "supportingEvidence": [
                    _evidence("Clarity", "dead clicks", format_number(dead_clicks), "target: 10 or fewer")
                ],
                "impact": "High",
                "timeframe": "1-2 weeks",
            })
            section["nextBestSteps"].append("Review Clarity recordings of dead clicks on booking and contact pages")

    # Loyalty: reviews + self-referrals

    def _loyalty(self, section: dict, metrics: ClientMetrics):
        if metrics.gbp is not None and metrics.gbp.value("new_reviews") > 0:
            new_reviews = metrics.gbp.value("new_reviews")
            section["keyWins"].append({
                "text": f"{format_number(new_reviews)} new reviews collected this period",
                "supportingEvidence": [
                    _evidence("GBP", "new reviews", format_number(new_reviews), "reviews this period")
                ],
            })

        if metrics.pms is not None:
            patients = metrics.pms.value("patient_count")
            self_rate = self_referral_rate(metrics.pms)
            if patients > 0 and self_rate >= 30:
                section["keyWins"].append({
                    "text": f"{self_rate:.1f}% of patients are self-referred, showing strong word of mouth",
                    "supportingEvidence": [
                        _evidence("PMS", "self-referral rate", f"{self_rate:.1f}%", "at or above 30% benchmark")
                    ],
                })

    # Growth: referrals + production

    def _growth(self, section: dict, pms: PeriodAggregate):
        patients = pms.value("patient_count")
        production = pms.value("totalProduction")
        self_rate = self_referral_rate(pms)

        if patients > 0:
            section["keyWins"].append({
                "text": f"{format_number(patients)} patient referrals generating ${format_number(production)} in production",
                "supportingEvidence": [
                    _evidence("PMS", "total patients", format_number(patients), _trend_note(pms)),
                    _evidence("PMS", "total production", f"${format_number(production)}", "production this period"),
                ],
            })

        if self_rate < 30:
            section["recommendations"].append({
                "text": f"Increase self-referral rate from {self_rate:.1f}% to 40%+ through digital marketing",
                "supportingEvidence": [
                    _evidence("PMS", "self-referral rate", f"{self_rate:.1f}%", "target: 40%+")
                ],
                "impact": "Medium",
                "timeframe": "6-8 weeks",
            })
            section["nextBestSteps"].append("Track referral source for every new patient at check-in")


def self_referral_rate(pms: PeriodAggregate) -> float:
    """Self-referred patients as a percentage of all patients"""
    return safe_divide(pms.value("selfReferred"), pms.value("patient_count")) * 100


# ---------------------------------------------------------------------------
# LLM narratives
# ---------------------------------------------------------------------------

SYSTEM_PROMPT = (
    "You are a senior dental practice consultant. Analyze patient journey data and "
    "provide insights in valid JSON format only. Never fabricate metrics."
)

RESPONSE_FORMAT = """{
  "sections": {
    "Awareness": {
      "keyWins": [{"text": "...", "supportingEvidence": [{"source": "GSC", "metric": "impressions", "value": "ACTUAL_VALUE", "comparison": "..."}]}],
      "recommendations": [{"text": "...", "supportingEvidence": [...], "impact": "High|Medium|Low", "timeframe": "..."}],
      "nextBestSteps": ["..."]
    },
    "Research": {...}, "Consideration": {...}, "Decision": {...}, "Loyalty": {...}, "Growth": {...}
  },
  "dataQuality": {"missingSources": [], "dataGaps": [], "anomalies": []}
}"""


def _fmt(value: Any, decimals: int = 0, suffix: str = "") -> str:
    if value is None:
        return "unknown"
    try:
        return f"{format_number(float(value), decimals)}{suffix}"
    except (TypeError, ValueError):
        return "unknown"


def _duration(seconds: float) -> str:
    seconds = int(seconds or 0)
    return f"{seconds // 60}:{seconds % 60:02d}"


def _ga4_lines(ga4: Dict[str, Any]) -> List[str]:
    return [
        f"- Total Users: {_fmt(ga4['totalUsers'])}",
        f"- New Users: {_fmt(ga4['newUsers'])}",
        f"- Engagement Rate: {_fmt(ga4['engagementRate'], 1, '%')}",
        f"- Conversions: {_fmt(ga4['conversions'])}",
        f"- Avg Session Duration: {_duration(ga4['avgSessionDuration'])}",
        f"- Performance Score: {ga4['calculatedScore']}/100",
        f"- Trend: {ga4['trend']} ({ga4['changePercent']}% change)",
    ]


def _gsc_lines(gsc: Dict[str, Any]) -> List[str]:
    return [
        f"- Total Impressions: {_fmt(gsc['totalImpressions'])}",
        f"- Total Clicks: {_fmt(gsc['totalClicks'])}",
        f"- Average CTR: {_fmt(gsc['averageCTR'], 2, '%')}",
        f"- Average Position: {_fmt(gsc['averagePosition'], 1)}",
        f"- Performance Score: {gsc['calculatedScore']}/100",
        f"- Trend: {gsc['trend']} ({gsc['changePercent']}% change)",
    ]


def _gbp_lines(gbp: Dict[str, Any]) -> List[str]:
    return [
        f"- Profile Views: {_fmt(gbp['totalViews'])}",
        f"- Phone Calls: {_fmt(gbp['phoneCallsTotal'])}",
        f"- Website Clicks: {_fmt(gbp['websiteClicksTotal'])}",
        f"- Average Rating: {_fmt(gbp['averageRating'], 1)}/5.0",
        f"- Total Reviews: {_fmt(gbp['totalReviews'])}",
        f"- New Reviews: {_fmt(gbp['newReviews'])}",
        f"- Performance Score: {gbp['calculatedScore']}/100",
        f"- Trend: {gbp['trend']} ({gbp['changePercent']}% change)",
    ]


def _clarity_lines(clarity: Dict[str, Any]) -> List[str]:
    return [
        f"- Total Sessions: {_fmt(clarity['totalSessions'])}",
        f"- Bounce Rate: {_fmt(clarity['bounceRate'], 1, '%')}",
        f"- Dead Clicks: {_fmt(clarity['deadClicks'])}",
        f"- Rage Clicks: {_fmt(clarity['rageClicks'])}",
        f"- UX Score: {clarity['calculatedScore']}/100",
        f"- Trend: {clarity['trend']} ({clarity['changePercent']}% change)",
    ]


def _pms_lines(pms: Dict[str, Any]) -> List[str]:
    return [
        f"- Total Patients: {_fmt(pms['totalPatients'])}",
        f"- Self-Referred: {_fmt(pms['selfReferred'])}",
        f"- Doctor-Referred: {_fmt(pms['drReferred'])}",
        f"- Self-Referral Rate: {_fmt(pms['selfReferralRate'], 1, '%')}",
        f"- Total Production: ${_fmt(pms['totalProduction'], 2)}",
        f"- Trend: {pms['trend']} ({pms['changePercent']}% change)",
    ]


# source: (heading when connected, line renderer, line when absent), in prompt order
PROMPT_BLOCKS = OrderedDict([
    ("ga4", ("WEBSITE ANALYTICS (Google Analytics 4):", _ga4_lines,
             "WEBSITE ANALYTICS (Google Analytics 4): Not connected")),
    ("gsc", ("SEARCH PERFORMANCE (Google Search Console):", _gsc_lines,
             "SEARCH PERFORMANCE (Google Search Console): Not connected")),
    ("gbp", ("LOCAL PRESENCE (Google Business Profile):", _gbp_lines,
             "LOCAL PRESENCE (Google Business Profile): Not connected")),
    ("clarity", ("USER EXPERIENCE (Microsoft Clarity):", _clarity_lines,
                 "USER EXPERIENCE (Microsoft Clarity): Not connected")),
    ("pms", ("PRACTICE MANAGEMENT DATA:", _pms_lines,
             "PRACTICE MANAGEMENT: No data uploaded")),
])


def format_source_for_prompt(source: str, agg: Optional[PeriodAggregate]) -> List[str]:
    """Prompt lines for one source; a single "not connected" line when absent"""
    heading, render, absent = PROMPT_BLOCKS[source]
    if agg is None:
        return [absent]
    return [heading] + render(agg.to_dict())


def format_metrics_for_prompt(metrics: ClientMetrics) -> str:
    """Plain-text block of the metric values that exist; absent sources say so"""
    blocks = [
        "\n".join(format_source_for_prompt(source, metrics.get(source)))
        for source in PROMPT_BLOCKS
    ]
    return "DENTAL PRACTICE PERFORMANCE METRICS:\n\n" + "\n\n".join(blocks)


def build_prompt(metrics: ClientMetrics) -> str:
    missing = ", ".join(SOURCE_LABELS[s] for s in metrics.missing_sources()) or "none"
    return f"""You are a senior dental practice consultant with expertise in SEO, local search marketing, patient acquisition funnels, dental practice financials, and patient relationship management.

Analyze the REAL DATA below and provide specific, actionable insights for each patient journey stage.

CRITICAL: NEVER fabricate metrics. Only use the actual numbers provided. Do not cite a data source that is not connected.
Sources not connected: {missing}

REAL PRACTICE DATA:
{format_metrics_for_prompt(metrics)}

PATIENT JOURNEY ANALYSIS REQUIREMENTS:
- Awareness: GSC impressions/clicks + GBP views for visibility
- Research: GA4 engagement + session duration for content performance
- Consideration: GBP reviews/rating + Clarity bounce rate for trust factors
- Decision: GA4 conversions + GBP phone calls + Clarity dead clicks for conversion optimization
- Loyalty: GBP new reviews + PMS self-referrals for retention
- Growth: PMS referral source breakdown + production for business development

Every recommendation must include supportingEvidence with the actual value it is based on.

RESPOND WITH JSON ONLY in this exact format:
{RESPONSE_FORMAT}"""


_CODE_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def parse_report_json(content: Optional[str]) -> Dict[str, Any]:
    """
    Parse a model response into a report dict.

    Raises:
        ProviderFailure: empty content, invalid JSON or no sections
    """
    if not content:
        raise ProviderFailure("AI provider returned empty content")

    clean = content.lstrip("\ufeff").strip()
    fenced = _CODE_FENCE.match(clean)
    if fenced:
        clean = fenced.group(1)

    try:
        parsed = json.loads(clean)
    except ValueError as e:
        log.error(f"Bad JSON from AI provider: {clean[:500]}")
        raise ProviderFailure(f"Invalid JSON from AI provider: {str(e)}") from e

    if not isinstance(parsed, dict):
        raise ProviderFailure("AI provider response is not a JSON object")

    raw_sections = parsed.get("sections")
    if not isinstance(raw_sections, dict) or not raw_sections:
        raise ProviderFailure("AI provider returned empty sections")

    sections = empty_sections()
    for stage in JOURNEY_STAGES:
        stage_data = raw_sections.get(stage)
        if not isinstance(stage_data, dict):
            continue
        for key in ("keyWins", "recommendations", "nextBestSteps"):
            items = stage_data.get(key)
            if isinstance(items, list):
                sections[stage][key] = items

    if not any(any(stage.values()) for stage in sections.values()):
        raise ProviderFailure("AI provider returned no journey stage content")

    quality = parsed.get("dataQuality") if isinstance(parsed.get("dataQuality"), dict) else {}
    return {
        "sections": sections,
        "dataQuality": {
            "missingSources": list(quality.get("missingSources") or []),
            "dataGaps": list(quality.get("dataGaps") or []),
            "anomalies": list(quality.get("anomalies") or []),
        },
        "lastUpdated": datetime.utcnow().isoformat(),
    }


class CompletionClient(ABC):
    """One system + user message in, response text out"""

    @abstractmethod
    def complete(self, system: str, user: str) -> str:
        ...


class AnthropicCompletionClient(CompletionClient):
    """Claude messages API"""

    def __init__(
        self,
        api_key: str,
        model: str,
        max_tokens: int = 2000,
        temperature: float = 0.3,
        timeout: float = 30.0
    ):
        # Retries are handled by retry_sync
        self.client = Anthropic(api_key=api_key, timeout=timeout, max_retries=0)
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

    def complete(self, system: str, user: str) -> str:
        response = self.client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            system=system,
            messages=[{"role": "user", "content": user}]
        )
        return "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )


class OpenAICompletionClient(CompletionClient):
    """Any OpenAI-compatible chat completions endpoint, JSON-object response format"""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: Optional[str] = None,
        max_tokens: int = 2000,
        temperature: float = 0.3,
        timeout: float = 30.0
    ):
        self.client = OpenAI(api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0)
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

    def complete(self, system: str, user: str) -> str:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user}
            ],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            response_format={"type": "json_object"}
        )
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""


class LLMNarrativeProvider(NarrativeProvider):
    """
    Narrative from a language model.

    The call gets one retry on transient failure. Any failure (network, HTTP,
    unparsable or empty output) raises ProviderFailure.
    """

    name = LLM

    def __init__(
        self,
        client: CompletionClient,
        max_attempts: int = 2,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.client = client
        self._complete = retry_sync(max_attempts=max_attempts, base_delay=0.8, sleep=sleep)(client.complete)

    def generate(self, metrics: ClientMetrics) -> Dict[str, Any]:
        prompt = build_prompt(metrics)
        log.info(f"Requesting LLM insights ({type(self.client).__name__}, prompt {len(prompt)} chars)")

        try:
            content = self._complete(SYSTEM_PROMPT, prompt)
        except Exception as e:
            raise ProviderFailure(f"LLM request failed: {str(e)}") from e

        report = parse_report_json(content)
        report["provider"] = self.name
        log.info("LLM insights parsed successfully")
        return report


# ---------------------------------------------------------------------------
# Fallback chain
# ---------------------------------------------------------------------------

class FallbackNarrativeChain:
    """Try each provider in order; the last one should be rule-based"""

    def __init__(self, providers: Sequence[NarrativeProvider]):
        self.providers: List[NarrativeProvider] = list(providers)
        if not self.providers or not isinstance(self.providers[-1], RuleBasedNarrativeProvider):
            self.providers.append(RuleBasedNarrativeProvider())

    @property
    def provider_names(self) -> List[str]:
        return [p.name for p in self.providers]

    def generate(self, metrics: ClientMetrics) -> Dict[str, Any]:
        for provider in self.providers:
            try:
                return provider.generate(metrics)
            except ProviderFailure as e:
                log.warning(f"Narrative provider '{provider.name}' failed, falling back: {str(e)}")
            except Exception as e:
                log.error(f"Unexpected error in narrative provider '{provider.name}': {str(e)}")

        raise ProviderFailure("All narrative providers failed")


def build_provider_chain(settings) -> FallbackNarrativeChain:
    """LLM provider first when enabled and configured, rule-based last"""
    providers: List[NarrativeProvider] = []

    if not settings.enable_llm_insights:
        log.info("LLM insights disabled, using rule-based narratives")
        return FallbackNarrativeChain(providers)

    provider = (settings.llm_provider or "").lower()
    try:
        if provider == "anthropic" and settings.anthropic_api_key:
            client = AnthropicCompletionClient(
                api_key=settings.anthropic_api_key,
                model=settings.llm_model,
                max_tokens=settings.llm_max_tokens,
                temperature=settings.llm_temperature,
                timeout=settings.llm_timeout_seconds,
            )
            providers.append(LLMNarrativeProvider(client))
        elif provider == "openai" and settings.openai_api_key:
            client = OpenAICompletionClient(
                api_key=settings.openai_api_key,
                model=settings.openai_model,
                base_url=settings.llm_base_url,
                max_tokens=settings.llm_max_tokens,
                temperature=settings.llm_temperature,
                timeout=settings.llm_timeout_seconds,
            )
            providers.append(LLMNarrativeProvider(client))
        else:
            log.info(f"No API key configured for LLM provider '{provider}', using rule-based narratives")
    except Exception as e:
        log.error(f"Failed to initialize LLM client: {str(e)}")

    return FallbackNarrativeChain(providers)
