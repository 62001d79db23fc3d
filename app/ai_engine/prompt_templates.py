"""
app/ai_engine/prompt_templates.py — All LangChain prompt templates for the AI engine.

Three prompt chains:
  1. KEYWORD_GENERATION  — service description → must/should/not keyword JSON
  2. ZERO_ORDER          — batch of topics + service → per-topic Q1/Q2/Q3 JSON
  3. AI_RANK             — topic + evidence + service → S/A/B/C judgment JSON
"""

from langchain_core.prompts import ChatPromptTemplate


# ── 1. Keyword Generation ─────────────────────────────────────────────────────

KEYWORD_GENERATION_PROMPT = ChatPromptTemplate.from_messages([
    (
        "system",
        (
            "You are an expert at searching Japanese municipal council transcripts. "
            "You analyze a company's service and produce search keywords that catch every "
            "council discussion related to it. Recall matters more than precision: "
            "results are filtered later. Include administrative, legal and everyday "
            "phrasings of the same concept, related policy areas, and council-style "
            "expressions such as 〜事業, 〜対策, 〜支援."
        ),
    ),
    (
        "human",
        """Generate council-transcript search keywords for the service below.

SERVICE:
Name: {service_name}
Description: {service_description}
Problems it solves: {target_problems}
Registered keywords: {target_keywords}

INSTRUCTIONS:
- "must": 3–5 keywords at the core of the service
- "should": 10–20 related terms and synonyms
- "not": 0–5 terms that mark obvious noise (e.g. already introduced, contract concluded)
- Keywords should be in Japanese, as used in local council meetings

Return ONLY a valid JSON object with exactly these fields:
{{
  "must": ["..."],
  "should": ["..."],
  "not": ["..."],
  "reasoning": "<one sentence>"
}}
""",
    ),
])


# ── 2. Zero-order triage ──────────────────────────────────────────────────────

ZERO_ORDER_PROMPT = ChatPromptTemplate.from_messages([
    (
        "system",
        (
            "You are a sales-lead triage assistant for a vendor selling to Japanese "
            "local governments. Decide BROADLY whether council topics are worth a sales "
            "follow-up. Missing a real lead is worse than keeping a weak one: when in "
            "doubt, pass the topic."
        ),
    ),
    (
        "human",
        """SERVICE:
Name: {service_name}
Description: {service_description}
Problems it solves: {target_problems}
Related keywords: {target_keywords}

Answer three yes/no questions for every topic:
Q1 (domain): is the topic related to the service's field ({service_name})?
Q2 (problem/keywords): is it even loosely related to the problems or keywords above?
Q3 (opportunity): does the municipality show awareness of the problem or willingness to consider action? ("under study" or "lacking information" counts as yes)

Scoring: score = (number of yes answers) × 3 + 1. A topic passes if at least one answer is yes.

TOPICS:
{topics}

Return ONLY a valid JSON object:
{{"results": [{{"id": 1, "q1": true, "q2": false, "q3": false, "score": 4, "passed": true}}]}}
""",
    ),
])


# ── 3. AI Rank ────────────────────────────────────────────────────────────────

AI_RANK_PROMPT = ChatPromptTemplate.from_messages([
    (
        "system",
        (
            "You are an expert analyst of Japanese municipal council Q&A, judging "
            "how promising each topic is as a sales lead. Be analytical and realistic."
        ),
    ),
    (
        "human",
        """Rank this council topic as a sales lead.

SERVICE:
{service_context}

TOPIC:
Title: {title}
Summary: {summary}
Keyword triage score: {zero_order_score}

TRANSCRIPT EVIDENCE (subtitle excerpts around the topic):
{evidence}

RANKS:
- S: budget or introduction is concretely planned for this fiscal year or next
- A: the municipality is actively studying the problem and options
- B: the problem is recognized but no concrete action yet
- C: unrelated, already solved, or explicitly rejected

Return ONLY a valid JSON object with exactly these fields:
{{
  "rank": "S" | "A" | "B" | "C",
  "score": <integer 0-12>,
  "reasoning": "<1-2 sentence explanation>",
  "keyPoints": {{"positive": ["..."], "negative": ["..."]}}
}}
""",
    ),
])
