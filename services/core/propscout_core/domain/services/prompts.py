"""Prompt builders for the AI-assisted stages.

Each builder renders a template with JSON-serialized inputs. The output schemas
embedded in the templates are what the stage orchestrators parse.
"""

import json
from typing import Any, Mapping, Sequence

from propscout_core.domain.services.confidence_gate import REQUIRED_FIELDS

# ============================================================================
# Extract
# ============================================================================

EXTRACT_PROMPT = """You are extracting UK property listing facts from a Rightmove URL.

Task:
1) Use web search to open/check the Rightmove listing page.
2) Use the provided snippets as additional evidence.
3) Return ONLY valid JSON with these keys:
price (number|null), bedrooms (number|null), bathrooms (number|null),
property_type (string|null), tenure (string|null), lease_years_remaining (number|null),
postcode (string|null), address (string|null), description (string|null), estate_agent (string|null),
ai_confidence (object|null), ai_warnings (array|null).

Rules:
- Do not guess. If you cannot find a field, return null.
- Prefer values you can cite from the page content.
- If the page blocks access, add a warning in ai_warnings.

Rightmove URL:
{listing_url}

Snippets:
{snippets}"""


# ============================================================================
# Stats
# ============================================================================

STATS_PROMPT = """You are generating listing statistics for a UK homebuyer app.

IMPORTANT RULES:
1) Output MUST be strict JSON only. No markdown. No extra text.
2) All *_score fields MUST be integers from 0 to 10.
3) Distances MUST be integer meters. Times MUST be integer minutes.
4) Always return a value for every field. If you must guess, set confidence="low" and explain in notes.
5) Provide sources whenever you used web information (URLs preferred). If you used listing data only, put source "listing".
6) Use the user's preferences to decide which optional fields matter, but still fill all fields.

PREFERENCE WEIGHTS:
- safety_weight, cleanliness_weight, transport_convenience_weight are integers 1..10.
- A weight of exactly 5 is neutral (average person). Above 5 means the user cares more; below 5 less.

TASK:
Given (A) confirmed listing facts, (B) the user's preferences, and (C) the listing URL, compute:
- Commute estimate from the listing postcode to work_postcode using transport_mode.
- Proximity stats: nearest station, supermarket, gym, school, religious building, green space.
- Area-level scores: safety_score, cleanliness_score, transport_convenience_score.
- Running cost estimates: service_charge_estimate_annual, ground_rent_estimate_annual.

INPUTS:

A) listing_facts_confirmed:
{facts}

B) user_preferences:
{preferences}

C) listing_url:
{listing_url}

OUTPUT JSON SCHEMA:

{{
  "stats_version": 1,
  "fields": {{
    "<field_name>": {{"value": 0, "confidence": "low|medium|high", "sources": ["..."], "notes": ""}}
  }},
  "required_confidence": {{"<field_name>": "low|medium|high"}},
  "required_source": {{"<field_name>": ["..."]}},
  "optional_confidence": {{"<field_name>": "low|medium|high"}},
  "optional_source": {{"<field_name>": ["..."]}}
}}

Field names:
{field_names}

Fill required_confidence/required_source for these required fields:
{required_fields}
Everything else goes into optional_confidence/optional_source.

Return JSON only."""

STATS_FIELD_NAMES: tuple[str, ...] = (
    "commute_total_minutes",
    "commute_walk_minutes",
    "commute_mode",
    "nearest_station_distance_m",
    "nearest_station_name",
    "supermarket_distance_m",
    "supermarket_name",
    "gym_distance_m",
    "gym_name",
    "school_distance_m",
    "school_name",
    "religious_building_distance_m",
    "religious_building_name",
    "green_space_distance_m",
    "green_space_name",
    "safety_score",
    "cleanliness_score",
    "transport_convenience_score",
    "service_charge_estimate_annual",
    "ground_rent_estimate_annual",
    "running_costs_confidence",
    "running_costs_notes",
)


# ============================================================================
# Evaluate
# ============================================================================

EVALUATE_PROMPT = """You are evaluating a UK property listing for a specific user.

IMPORTANT RULES:
1) Output MUST be strict JSON only. No markdown. No extra text.
2) Use the user's preferences. A weight of 5 is neutral; note that in the relevant explanation.
3) You may use web_search to verify claims (area safety, transport, flood risk, leasehold pitfalls). Provide sources for any important factual claim.
4) Use web_search to form a brief opinion on the estate agent handling the listing. If you cannot find credible information, say so and keep it neutral.
5) If uncertain, add an assumption or warning rather than stating it as fact.

INPUTS:
A) listing_facts_confirmed:
{facts}

B) listing_stats_confirmed:
{stats}

C) user_preferences:
{preferences}

D) listing_url:
{listing_url}

OUTPUT JSON SCHEMA:

{{
  "rank_score": 0.0,
  "overall_score": 0.0,
  "executive_summary": "",
  "estate_agent_snippet": "",
  "per_preference": {{
    "<preference>": {{"score": 0, "explanation": "", "evidence": ["..."], "weight_note": ""}}
  }},
  "warnings": ["..."],
  "assumptions": ["..."],
  "model_info": {{"schema_version": 1, "notes": ""}}
}}

Preferences to score:
{preference_keys}

Scoring guidance:
- per_preference.*.score is integer 0..10.
- overall_score is 0..10 (float allowed).
- rank_score is 0..100 (float allowed).

Return JSON only."""

EVALUATION_PREFERENCE_KEYS: tuple[str, ...] = (
    "budget",
    "beds_baths",
    "property_type",
    "tenure",
    "commute",
    "running_costs",
    "safety",
    "cleanliness",
    "transport_convenience",
    "lifestyle",
    "storage",
    "parking",
    "condition",
)


def _dump(value: Mapping[str, Any]) -> str:
    return json.dumps(dict(value), default=str, sort_keys=True)


def build_extract_prompt(listing_url: str, snippets: Sequence[str]) -> str:
    rendered = "\n\n".join(f"SNIPPET_{i}: {s}" for i, s in enumerate(snippets, start=1))
    return EXTRACT_PROMPT.format(listing_url=listing_url, snippets=rendered)


def build_stats_prompt(
    facts: Mapping[str, Any], preferences: Mapping[str, Any], listing_url: str
) -> str:
    return STATS_PROMPT.format(
        facts=_dump(facts),
        preferences=_dump(preferences),
        listing_url=listing_url,
        field_names=", ".join(STATS_FIELD_NAMES),
        required_fields=", ".join(REQUIRED_FIELDS),
    )


def build_evaluate_prompt(
    facts: Mapping[str, Any],
    stats: Mapping[str, Any],
    preferences: Mapping[str, Any],
    listing_url: str,
) -> str:
    return EVALUATE_PROMPT.format(
        facts=_dump(facts),
        stats=_dump(stats),
        preferences=_dump(preferences),
        listing_url=listing_url,
        preference_keys=", ".join(EVALUATION_PREFERENCE_KEYS),
    )
