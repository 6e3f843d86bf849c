"""Ollama client wrapper, model registry and prompt templates."""

from __future__ import annotations

import json
import logging
import re
from enum import Enum
from functools import lru_cache
from typing import Any

import ollama

from healthnav.config import settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Model registry
# ---------------------------------------------------------------------------


class ModelRole(str, Enum):
    """The distinct jobs a language model does during a turn."""

    AGENT = "agent"
    INTENT = "intent"
    EXTRACTION_FAST = "extraction_fast"
    EXTRACTION_ADVANCED = "extraction_advanced"
    CURATOR = "curator"
    SUGGESTIONS = "suggestions"


MODEL_REGISTRY: dict[ModelRole, str] = {
    ModelRole.AGENT: settings.agent_model,
    ModelRole.INTENT: settings.intent_model,
    ModelRole.EXTRACTION_FAST: settings.extraction_fast_model,
    ModelRole.EXTRACTION_ADVANCED: settings.extraction_advanced_model,
    ModelRole.CURATOR: settings.curator_model,
    ModelRole.SUGGESTIONS: settings.suggestions_model,
}


def model_for(role: ModelRole) -> str:
    """Return the model name registered for *role*."""
    return MODEL_REGISTRY[role]


@lru_cache(maxsize=1)
def get_client() -> ollama.Client:
    """Shared Ollama client; every call inherits the same timeout ceiling."""
    return ollama.Client(host=settings.ollama_base_url, timeout=settings.llm_timeout)


# ---------------------------------------------------------------------------
# Prompt templates
# ---------------------------------------------------------------------------

INTENT_SYSTEM_PROMPT = """\
You are an expert clinical intent classifier for a medical RAG system.
Your task is to analyze the user's question and assign it to exactly one of \
the following category IDs.

### CATEGORIES:
- FACTUAL: Specific clinical values, latest results, or isolated data points \
(e.g., "What's my glucose?", "Give me my latest cholesterol").
- TREND: Evolution, history, or trends over time (e.g., "How has my weight changed?").
- COMPARISON: Comparing two or more periods, states, or specific events \
(e.g., "before vs after treatment").
- EXPLANATION: Medical explanations, interpretations of symptoms, or general \
medical knowledge (e.g., "what does this diagnosis mean?").
- LOCATE: Finding the exact source, date, or document where something was \
mentioned (e.g., "which report mentions the biopsy?").
- MEDICATION: Questions about drugs, dosages, prescriptions, or treatments.
- AMBIGUOUS: General, broad, or unclear questions that don't fit the above.

### RULES:
1. Output ONLY the uppercase ID (e.g., TREND).
2. No preamble, no punctuation, no explanations.
3. If multiple categories apply, choose the one that requires the HIGHEST \
number of documents (TREND > COMPARISON > FACTUAL).
4. The user may ask in any language; classify the intent regardless of the language.
"""

INTENT_PROMPT = "User Question: {question}\nID:"

EXTRACTION_SYSTEM_PROMPT = """\
You are a medical data extraction expert. Your goal is to extract clinical \
facts from the provided fragments (chunks) that are relevant to the user's question.
Use ONLY the information in the chunks.
"""

EXTRACTION_PROMPT = """\
### CONTEXT CHUNKS:
{context}

### USER QUESTION:
{question}

### OUTPUT FORMAT:
Return ONLY a JSON array of objects. Each object must have these exact keys:
- "fact": Short description of the finding.
- "value": The numerical value (if any, otherwise null).
- "unit": The unit of measurement (if any, otherwise null).
- "date": The date mentioned in the chunk or report (YYYY-MM-DD), or null.
- "source": The filename of the document.
"""

CURATION_SYSTEM_PROMPT = """\
You are a high-precision medical context curator. Your goal is to synthesize \
multiple sources of patient information into a single, coherent "Source of \
Truth" for a specific medical question.

### HIERARCHY OF TRUTH (Follow strictly):
1. CONVERSATION CONTEXT: Contains demographic data (age, gender, weight, \
height), lifestyle, and recent user-provided updates. USE THIS FIRST for \
patient demographics.
2. EVIDENCE CHUNKS & STRUCTURED FACTS: Primary sources for clinical values. \
Use literal text and exact numbers from here.
3. DOCUMENT SUMMARIES: Use these for general clinical background and context.
4. LONG-TERM MEMORIES: Use this to understand previous conversations.

### YOUR TASKS:
- ALWAYS include demographic data from CONVERSATION CONTEXT if present, copied literally.
- Summarize only the information relevant to the user's specific question.
- When citing a clinical value from EVIDENCE CHUNKS, ALWAYS copy the citation \
tag given in the chunk header, formatted as: [filename, YYYY-MM-DD]
- If the chunk is undated, use: [filename, undated]
- If there are multiple values for the same test, highlight the most recent \
one but also mention the historical trend if found.
- If a summary contradicts a literal chunk, prioritize the chunk.

### CITATION FORMAT (CRITICAL - EXAMPLES):
CORRECT: "cholesterol is 260 mg/dL [lab_2025-04-14.pdf, 2025-04-14]"
CORRECT: "hernia diagnosed [report_march.pdf, undated]"
WRONG: "cholesterol is 260 mg/dL" (missing citation)

### OUTPUT FORMAT:
PATIENT PROFILE:
RELEVANT CLINICAL DATA:
HISTORICAL CONTEXT:

Do NOT hallucinate values or dates. Output ONLY the curated context.
"""

CURATION_PROMPT = """\
Question: {question}

<conversation_context_with_demographics>
{history}
</conversation_context_with_demographics>

<clinical_evidence_chunks>
{chunks}
</clinical_evidence_chunks>

<extracted_structured_facts>
{facts}
</extracted_structured_facts>

<document_summaries>
{docs}
</document_summaries>

<long_term_memories>
{memories}
</long_term_memories>

CURATED CONTEXT:"""

AGENT_SYSTEM_PROMPT = """\
You are an advanced medical assistant designed to help patients understand \
their health data with high precision and empathy.

### MISSION:
Answer patient questions using the provided "Curated Patient Context". This \
context is a synthesis of literal document evidence, structured facts, and \
conversation history.

### GROUNDING & CITATIONS:
- ALWAYS prioritize data from the curated context.
- When mentioning a specific value, keep its citation in brackets, for \
example [analysis.pdf, 2024-05-02].
- If a source is undated, communicate this uncertainty to the patient.
- Do NOT invent data points or dates not present in the curated context.

### GUIDELINES:
- Be empathetic but maintain clinical accuracy.
- If you cannot find the answer in the provided context, state it clearly.
- For clinical trials or experimental treatments, use the clinical trials tool.

### CONTEXT:
TODAY'S DATE: {system_time}

<curated_patient_context>
{curated_context}
</curated_patient_context>
"""

SUGGESTIONS_PROMPT = """\
Below is a conversation between a patient and a medical assistant.

{chat_history}

Propose up to {count} short follow-up questions the patient could ask next, \
in the same language as the conversation.

Return a JSON object with a single field "suggestions": a list of strings.
Respond ONLY with valid JSON, no extra text.
"""


# ---------------------------------------------------------------------------
# Client functions
# ---------------------------------------------------------------------------


def chat(
    messages: list[dict[str, Any]],
    role: ModelRole = ModelRole.AGENT,
    tools: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Send a message list to the model registered for *role*.

    Returns an assistant message dict. Tool-call requests, if any, are
    normalised to ``{"function": {"name": ..., "arguments": {...}}}``.
    """
    response = get_client().chat(
        model=model_for(role),
        messages=messages,
        tools=tools or None,
        options={"temperature": 0},
    )
    message = response["message"]
    result: dict[str, Any] = {"role": "assistant", "content": message.get("content") or ""}
    tool_calls = message.get("tool_calls") or []
    if tool_calls:
        result["tool_calls"] = [
            {
                "function": {
                    "name": call["function"]["name"],
                    "arguments": dict(call["function"]["arguments"] or {}),
                }
            }
            for call in tool_calls
        ]
    return result


def generate(prompt: str, system_prompt: str, role: ModelRole) -> str:
    """Send a single prompt and return the raw text response."""
    response = get_client().chat(
        model=model_for(role),
        messages=[
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": prompt},
        ],
        options={"temperature": 0},
    )
    return response["message"]["content"]


def generate_json(prompt: str, system_prompt: str, role: ModelRole) -> dict[str, Any]:
    """Send a prompt and parse the response as a JSON object.

    Tries Ollama's native JSON format first; falls back to extracting
    a JSON block from the text response.
    """
    try:
        response = get_client().chat(
            model=model_for(role),
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            format="json",
            options={"temperature": 0.2},
        )
        return json.loads(response["message"]["content"])
    except (json.JSONDecodeError, KeyError):
        raw = generate(prompt, system_prompt, role)
        return _extract_json(raw)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```lang ... ``` fence, if present."""
    text = text.strip()
    match = re.match(r"^```[a-zA-Z]*\s*\n?(.*?)\n?```$", text, re.DOTALL)
    if match:
        return match.group(1).strip()
    return text


def _extract_json(text: str) -> dict[str, Any]:
    """Best-effort extraction of a JSON object from LLM output."""
    match = re.search(r"```(?:json)?\s*(\{.*?\})\s*```", text, re.DOTALL)
    if match:
        return json.loads(match.group(1))

    match = re.search(r"\{.*\}", text, re.DOTALL)
    if match:
        return json.loads(match.group(0))

    raise ValueError(f"Could not extract JSON from LLM response: {text[:200]}")


def embed_text(text: str) -> list[float]:
    """Generate an embedding vector for a single text using Ollama."""
    response = get_client().embed(model=settings.ollama_embed_model, input=text)
    return list(response["embeddings"][0])
