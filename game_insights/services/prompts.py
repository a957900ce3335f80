"""
Prompt templates for the completion provider.

Three prompt families are rendered here:

- Column classification: headers plus the first sample rows.
- Insight generation: data snapshot, mapped columns, top anomalies, cohort
  comparison and optional aggregations, with game-type guidance.
- Question answering: question plus a compact dataset summary.

Rendering is deterministic (sorted JSON keys, fixed sample sizes) so identical
context yields an identical prompt, and therefore an identical cache key.
"""

import json
import re
from typing import Any, Dict, List, Sequence, Tuple

from game_insights.models.enums import CanonicalField, GameType, QuestionType
from game_insights.models.schemas import InsightContext, QAContext


# =============================================================================
# Column Classification
# =============================================================================

CLASSIFIER_SYSTEM_PROMPT = (
    "You are a game analytics expert. Analyze dataset columns and respond ONLY with valid JSON."
)

CLASSIFIER_SAMPLE_ROWS: int = 3


def build_classifier_user_prompt(headers: Sequence[str], sample_rows: Sequence[Dict[str, Any]]) -> str:
    canonical_names = ', '.join(
        field.value for field in CanonicalField if field not in (CanonicalField.UNKNOWN, CanonicalField.NOISE)
    )
    samples = json.dumps(list(sample_rows)[:CLASSIFIER_SAMPLE_ROWS], indent=2, sort_keys=True, default=str)
    return f"""Analyze these column headers and sample data from a game analytics dataset.

HEADERS: {', '.join(headers)}

SAMPLE DATA (first {CLASSIFIER_SAMPLE_ROWS} rows):
{samples}

Respond with this exact JSON structure:
{{
  "columns": [
    {{
      "original": "original_column_name",
      "canonical": "standardized_name",
      "type": "string|number|date|boolean|json",
      "role": "identifier|timestamp|metric|dimension|noise|unknown",
      "confidence": 0.95,
      "reasoning": "Brief explanation"
    }}
  ],
  "gameType": "puzzle|idle|battle_royale|match3_meta|gacha_rpg|custom",
  "suggestedCharts": ["retention_curve", "level_funnel"],
  "warnings": ["Any data quality issues"],
  "dataQuality": 0.85
}}

CANONICAL NAMES to use: {canonical_names}, unknown, noise

ROLES:
- identifier: unique IDs (user, session, device)
- timestamp: date/time columns
- metric: numbers to aggregate (revenue, score)
- dimension: categories to group by (country, level)
- noise: debug/internal data to filter
- unknown: unclear purpose"""


# =============================================================================
# Insight Generation
# =============================================================================

INSIGHT_SYSTEM_PROMPT = """You are an expert game analytics consultant specializing in mobile game performance optimization. You analyze game data to identify actionable insights that drive player engagement, retention, and monetization.

Your analysis style:
- Data-driven: Always reference specific numbers and trends
- Actionable: Every insight should suggest a concrete next step
- Prioritized: Focus on high-impact findings first
- Game-aware: Consider the specific game type's unique dynamics
- Concise: Keep insights brief but informative

You respond ONLY with valid JSON matching the specified schema. Do not include any text outside the JSON."""

GAME_TYPE_CONTEXT: Dict[GameType, str] = {
    GameType.PUZZLE: """This is a PUZZLE game. Focus on:
- Level progression velocity and completion rates
- Difficulty spikes and player frustration points
- Booster/power-up economy and usage patterns
- Session frequency and duration
Key metrics: Level completion rate, attempts-per-level, booster usage ratio, session duration""",
    GameType.IDLE: """This is an IDLE/INCREMENTAL game. Focus on:
- Prestige cycle timing and progression
- Offline reward balance vs active play
- Currency inflation over time
Key metrics: Time-to-prestige, offline/online ratio, currency generation rate""",
    GameType.BATTLE_ROYALE: """This is a BATTLE ROYALE game. Focus on:
- Match quality and fairness perception
- Skill-based matchmaking effectiveness
- Weapon/loadout meta balance
Key metrics: Average placement, kills-per-match, survival time""",
    GameType.MATCH3_META: """This is a MATCH-3 with META LAYER game. Focus on:
- Balance between match-3 and meta progression
- Decoration/story economy
- Booster dependency and attach rates
Key metrics: Story completion rate, decoration purchases, booster attach rate""",
    GameType.GACHA_RPG: """This is a GACHA/RPG game. Focus on:
- Banner performance and timing
- Pity system utilization patterns
- Spender tier distribution (whale, dolphin, minnow)
Key metrics: Pull-per-user, pity hit rate, spend concentration""",
    GameType.CUSTOM: (
        "This is a CUSTOM/OTHER game type. Analyze based on available data patterns without "
        "game-specific assumptions. Look for general engagement, retention, and monetization patterns."
    ),
}

INSIGHT_TOP_ANOMALIES: int = 5

INSIGHT_RESPONSE_FORMAT = """Respond with this exact JSON structure:
{
  "insights": [
    {
      "type": "positive|negative|neutral|warning|opportunity",
      "category": "retention|monetization|engagement|progression|quality",
      "title": "Brief title (max 60 chars)",
      "description": "1-2 sentence finding with specific numbers",
      "metric": "relevant_metric_name",
      "value": "the key number or percentage",
      "change": -5.2,
      "priority": 8,
      "recommendation": "Specific actionable step to take",
      "confidence": 0.85,
      "evidence": ["Supporting data point 1", "Supporting data point 2"]
    }
  ],
  "summary": "2-3 sentence executive summary of the game's health",
  "topPriority": "The single most important action to take right now"
}

Generate 5-8 insights, prioritized by potential impact. Include at least one insight for retention, monetization, and engagement if data is available."""


def build_insight_user_prompt(context: InsightContext) -> str:
    snapshot = context.dataSnapshot
    columns = ', '.join(
        f"{m.originalName} ({m.canonical.value})"
        for m in context.columnMappings
        if m.canonical not in (CanonicalField.UNKNOWN, CanonicalField.NOISE)
    )

    sections: List[str] = [
        f"Analyze this {context.gameType.value.upper()} game data and generate actionable insights.",
        GAME_TYPE_CONTEXT.get(context.gameType, GAME_TYPE_CONTEXT[GameType.CUSTOM]),
    ]

    summary_lines = [
        "## Data Summary",
        f"- Total Users: {snapshot.totalUsers:,}",
        f"- Total Revenue: ${snapshot.totalRevenue:,.2f}",
        f"- Row Count: {snapshot.rowCount:,}",
    ]
    if snapshot.dateRange:
        summary_lines.append(f"- Date Range: {snapshot.dateRange.start} to {snapshot.dateRange.end}")
    sections.append('\n'.join(summary_lines))
    sections.append(f"## Available Data Columns\n{columns or 'None mapped'}")

    if context.anomalies:
        lines = [
            f"- {a.metric}: {a.description} ({a.severity.value})"
            for a in context.anomalies[:INSIGHT_TOP_ANOMALIES]
        ]
        sections.append("## Detected Anomalies\n" + '\n'.join(lines))

    comparison = context.cohortComparison
    if comparison is not None:
        lines = [f"- Average {day}: {value}%" for day, value in comparison.avgRetention.items()]
        lines.extend(f"- {insight}" for insight in comparison.insights)
        if lines:
            sections.append("## Cohort Retention\n" + '\n'.join(lines))

    if context.aggregations:
        sections.append(
            "## Additional Aggregations\n" + json.dumps(context.aggregations, indent=2, sort_keys=True, default=str)
        )

    sections.append("## Response Format\n" + INSIGHT_RESPONSE_FORMAT)
    return '\n\n'.join(sections)


# =============================================================================
# Question Answering
# =============================================================================

QA_SYSTEM_PROMPT = """You are a data analyst assistant for a game analytics platform. You help users understand their game data by answering natural language questions.

Your capabilities:
1. Interpret questions about metrics, trends, and player behavior
2. Generate query logic to answer questions (filters, aggregations, groupings)
3. Explain findings in plain language with supporting data
4. Suggest related questions for deeper analysis

Rules:
- If a question cannot be answered with available data, explain what's missing
- Always show confidence levels for interpretations
- Reference specific column names when relevant
- Suggest 2-3 related follow-up questions

You respond ONLY with valid JSON matching the specified schema."""

QA_PROMPT_SAMPLE_ROWS: int = 2

SUGGESTED_QUESTIONS: Dict[GameType, List[str]] = {
    GameType.PUZZLE: [
        "What's my D7 retention this week?",
        "Which level has the highest failure rate?",
        "Compare iOS vs Android retention",
        "What's the average session length?",
        "At what level do most players quit?",
    ],
    GameType.IDLE: [
        "How many users reached prestige 2?",
        "What's the average offline time?",
        "How long until first prestige on average?",
    ],
    GameType.BATTLE_ROYALE: [
        "What's the average kills per match?",
        "How long do matches typically last?",
        "Compare engagement by platform",
    ],
    GameType.MATCH3_META: [
        "What's the story completion rate?",
        "Which levels have the highest booster usage?",
    ],
    GameType.GACHA_RPG: [
        "How much did the latest banner earn?",
        "What's the average pulls per user?",
    ],
    GameType.CUSTOM: [
        "What's my total user count?",
        "What's the overall revenue?",
        "How is engagement trending?",
    ],
}

# Checked in order; the first match decides the category
QUESTION_PATTERNS: List[Tuple[re.Pattern, QuestionType]] = [
    (re.compile(r"what('?s| is) (my |the )?retention", re.I), QuestionType.RETENTION),
    (re.compile(r"how many users? (returned|came back)", re.I), QuestionType.RETENTION),
    (re.compile(r"d(\d+) retention", re.I), QuestionType.RETENTION),
    (re.compile(r"how much revenue", re.I), QuestionType.REVENUE),
    (re.compile(r"total revenue", re.I), QuestionType.REVENUE),
    (re.compile(r"(arpu|arppu|ltv)", re.I), QuestionType.REVENUE),
    (re.compile(r"how much (did|does) .+ (earn|make|generate)", re.I), QuestionType.REVENUE),
    (re.compile(r"how many (users?|players?)", re.I), QuestionType.COUNT),
    (re.compile(r"(dau|mau|wau)", re.I), QuestionType.ENGAGEMENT),
    (re.compile(r"average session", re.I), QuestionType.ENGAGEMENT),
    (re.compile(r"how (long|often)", re.I), QuestionType.ENGAGEMENT),
    (re.compile(r"compare (.+) (vs|versus|to|with|and) (.+)", re.I), QuestionType.COMPARISON),
    (re.compile(r"(.+) by (country|platform|version|device)", re.I), QuestionType.COMPARISON),
    (re.compile(r"difference between", re.I), QuestionType.COMPARISON),
    (re.compile(r"(trend|over time|last (week|month|year))", re.I), QuestionType.TREND),
    (re.compile(r"how (has|is) .+ (changed|changing|trending)", re.I), QuestionType.TREND),
    (re.compile(r"which (level|stage|step) has (highest|most|lowest)", re.I), QuestionType.FUNNEL),
    (re.compile(r"(completion|conversion|drop.?off) rate", re.I), QuestionType.FUNNEL),
    (re.compile(r"where do (users?|players?) (quit|leave|churn)", re.I), QuestionType.FUNNEL),
]


def detect_question_type(question: str) -> QuestionType:
    """
    Categorize a natural-language question.

    Example:
        >>> detect_question_type("What is the D7 retention?")
        <QuestionType.RETENTION: 'retention'>
    """
    for pattern, question_type in QUESTION_PATTERNS:
        if pattern.search(question):
            return question_type
    return QuestionType.UNKNOWN


def build_qa_user_prompt(question: str, context: QAContext) -> str:
    columns = ', '.join(f"{c.name} ({c.canonical.value})" for c in context.columns)
    if context.sampleRows:
        samples = json.dumps(context.sampleRows[:QA_PROMPT_SAMPLE_ROWS], indent=2, sort_keys=True, default=str)
    else:
        samples = 'No sample data available'
    date_range = (
        f"- Date range: {context.dateRange.start} to {context.dateRange.end}\n" if context.dateRange else ''
    )
    metrics = ', '.join(context.availableMetrics) or 'None pre-calculated'

    return f"""Answer this question about the game data:
"{question}"

## Available Data
Game Type: {context.gameType.value}
Columns: {columns}

Sample values:
{samples}

Data statistics:
- Total rows: {context.rowCount:,}
{date_range}- Available metrics: {metrics}

## Response Format
Respond with this exact JSON structure:
{{
  "answer": "Clear, plain language answer to the question with specific numbers",
  "methodology": "Brief explanation of how you arrived at this answer",
  "queryLogic": {{
    "filters": [{{ "column": "column_name", "operator": "=|!=|>|<|>=|<=|contains", "value": "value" }}],
    "aggregations": [{{ "column": "column_name", "function": "sum|avg|count|max|min" }}],
    "groupBy": ["column1"]
  }},
  "dataPoints": [
    {{ "label": "Metric name", "value": "123 or 45%", "context": "Brief explanation" }}
  ],
  "confidence": 0.85,
  "relatedQuestions": ["Follow-up question 1?", "Follow-up question 2?"],
  "limitations": "Any caveats or limitations of this answer"
}}

If the question cannot be answered with the available data, set confidence to 0 and explain in "limitations"."""
