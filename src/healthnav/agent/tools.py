"""Tools the agent can call mid-turn, collected in a name-keyed registry."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

import httpx
from pydantic import BaseModel, Field

from healthnav.config import settings

logger = logging.getLogger(__name__)

CONTEXT_SNIPPET_CHARS = 1000


class ToolNotFoundError(KeyError):
    """The model requested a tool that is not registered."""


@dataclass(frozen=True)
class Tool:
    """A named capability with a validated argument schema."""

    name: str
    description: str
    args_schema: type[BaseModel]
    func: Callable[[Any, dict[str, Any]], str]

    def schema(self) -> dict[str, Any]:
        """Function schema in the format Ollama's ``tools=`` expects."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.args_schema.model_json_schema(),
            },
        }

    def invoke(self, arguments: dict[str, Any] | None, config: dict[str, Any]) -> str:
        args = self.args_schema.model_validate(arguments or {})
        return self.func(args, config)


# ---------------------------------------------------------------------------
# Web search (Perplexity)
# ---------------------------------------------------------------------------


class WebSearchArgs(BaseModel):
    question: str = Field(
        description=(
            "The specific question about very recent information. MUST mention "
            "the current year or words like 'latest' or 'recent'."
        )
    )


_RECENCY_WORDS = re.compile(r"\b(20\d\d|latest|recent|breaking|new)\b", re.IGNORECASE)
_ERROR_PHRASES = re.compile(
    r"(could not|couldn't|attempted to fetch|failed to|unable to|wasn't able to retrieve)",
    re.IGNORECASE,
)


def build_search_question(question: str, curated_context: str = "", now: datetime | None = None) -> str:
    """Attach a patient context snippet and force a recency window."""
    now = now or datetime.now()
    current, previous = now.year, now.year - 1

    enhanced = question
    if curated_context:
        snippet = curated_context[:CONTEXT_SNIPPET_CHARS]
        enhanced = f"{question}\n\nPatient medical context (for reference): {snippet}"

    if _RECENCY_WORDS.search(enhanced):
        return (
            f"{enhanced} Prioritize information from {current} and {previous}. "
            f"Exclude information from before {previous}."
        )
    return (
        f"{enhanced} Focus exclusively on information from {previous} and {current}. "
        f"Only include information published or updated in {previous}-{current}. "
        f"Ignore any information from before {previous}."
    )


def _search_system_prompt(has_context: bool, now: datetime) -> str:
    current, previous = now.year, now.year - 1
    prompt = (
        "You are a medical search engine specialized in finding the LATEST medical "
        f"information. Today is {now:%B} {now.day}, {current}.\n\n"
        f"1. Search the web actively for information from {previous} and {current}.\n"
        f"2. Prioritize information published in {current} over {previous}.\n"
        f"3. Label anything older than {previous} as historical context.\n"
        "4. Always cite the publication date or year when available.\n"
        "5. If you found results, provide them directly without commenting on the search."
    )
    if has_context:
        prompt += (
            "\n\nThe question includes patient medical context. Focus on the patient's "
            "specific diagnosis, condition or mutation, and relate findings back to it."
        )
    return prompt


def format_references(citations: list[Any], search_results: list[Any]) -> str:
    """Render citations (or, failing that, search results) as a link list."""
    if citations:
        lines = []
        for i, citation in enumerate(citations, 1):
            if isinstance(citation, str):
                lines.append(f'{i}. <a href="{citation}" target="_blank">{citation}</a>')
            elif citation.get("url"):
                title = citation.get("title") or citation["url"]
                lines.append(f'{i}. <a href="{citation["url"]}" target="_blank">{title}</a>')
            else:
                lines.append(f"{i}. {citation.get('text', citation)}")
        return "\n\n---\n\n### References\n\n" + "\n".join(lines)

    if search_results:
        lines = []
        for i, result in enumerate(search_results, 1):
            if isinstance(result, dict) and result.get("url"):
                title = result.get("title") or result.get("name") or result["url"]
                lines.append(f'{i}. <a href="{result["url"]}" target="_blank">{title}</a>')
            else:
                lines.append(f"{i}. {result}")
        return "\n\n---\n\n### Sources consulted\n\n" + "\n".join(lines)

    return ""


def web_search(args: WebSearchArgs, config: dict[str, Any]) -> str:
    if not settings.perplexity_api_key:
        logger.warning("Web search requested but no Perplexity API key is configured")
        return "Web search is not available right now."

    now = datetime.now()
    curated_context = config.get("curated_context", "")
    payload = {
        "model": settings.perplexity_model,
        "messages": [
            {"role": "system", "content": _search_system_prompt(bool(curated_context), now)},
            {"role": "user", "content": build_search_question(args.question, curated_context, now)},
        ],
        "search_mode": "academic",
        "web_search_options": {"search_context_size": "medium"},
    }

    try:
        response = httpx.post(
            settings.perplexity_url,
            json=payload,
            headers={"Authorization": f"Bearer {settings.perplexity_api_key}"},
            timeout=httpx.Timeout(settings.llm_timeout, connect=10.0),
        )
        response.raise_for_status()
    except httpx.HTTPError:
        logger.exception("Perplexity search failed")
        return "I encountered an error while searching for recent information. Please try again or rephrase your question."

    data = response.json()
    choices = data.get("choices") or [{}]
    content = (choices[0].get("message") or {}).get("content", "").strip()
    if not content:
        return "I searched for recent information but did not find specific results. Please try rephrasing your question."

    if _ERROR_PHRASES.search(content) and len(content) <= 200:
        return "I searched for recent information but did not find specific updates on this topic."

    return content + format_references(data.get("citations") or [], data.get("search_results") or [])


# ---------------------------------------------------------------------------
# Clinical trials
# ---------------------------------------------------------------------------


class ClinicalTrialsArgs(BaseModel):
    pass


TRIALGPT_LINK = "<a href='https://trialgpt.app' target='_blank'>TrialGPT</a>"

CLINICAL_TRIALS_MESSAGES = {
    "en": f"To find relevant clinical trials, you can use our specialized platform {TRIALGPT_LINK}, which allows you to search for active studies, filter by location, and verify eligibility criteria in a personalized way.",
    "es": f"Para encontrar ensayos clínicos relevantes, puedes usar nuestra plataforma especializada {TRIALGPT_LINK}, que te permite buscar estudios activos, filtrar por ubicación y verificar criterios de elegibilidad de forma personalizada.",
    "fr": f"Pour trouver des essais cliniques pertinents, vous pouvez utiliser notre plateforme spécialisée {TRIALGPT_LINK}, qui vous permet de rechercher des études actives, de filtrer par localisation et de vérifier les critères d'éligibilité de manière personnalisée.",
    "de": f"Um relevante klinische Studien zu finden, können Sie unsere spezialisierte Plattform {TRIALGPT_LINK} nutzen, mit der Sie aktive Studien suchen, nach Standort filtern und Zulassungskriterien personalisiert überprüfen können.",
    "it": f"Per trovare studi clinici rilevanti, puoi utilizzare la nostra piattaforma specializzata {TRIALGPT_LINK}, che ti permette di cercare studi attivi, filtrare per posizione e verificare i criteri di idoneità in modo personalizzato.",
    "pt": f"Para encontrar ensaios clínicos relevantes, você pode usar nossa plataforma especializada {TRIALGPT_LINK}, que permite pesquisar estudos ativos, filtrar por localização e verificar critérios de elegibilidade de forma personalizada.",
}


def clinical_trials_search(args: ClinicalTrialsArgs, config: dict[str, Any]) -> str:
    lang = config.get("user_lang") or "en"
    return CLINICAL_TRIALS_MESSAGES.get(lang, CLINICAL_TRIALS_MESSAGES["en"])


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

TOOLS = [
    Tool(
        name="web_search",
        description=(
            "ONLY use this tool when you need VERY RECENT information (latest research, "
            "news, regulatory approvals or trial status) that is NOT in the patient's "
            "documents or your own knowledge."
        ),
        args_schema=WebSearchArgs,
        func=web_search,
    ),
    Tool(
        name="clinical_trials_search",
        description="Use this tool to search for clinical trials, medical studies or research protocols for patients.",
        args_schema=ClinicalTrialsArgs,
        func=clinical_trials_search,
    ),
]

TOOL_REGISTRY: dict[str, Tool] = {tool.name: tool for tool in TOOLS}


def get_tool(name: str) -> Tool:
    try:
        return TOOL_REGISTRY[name]
    except KeyError:
        raise ToolNotFoundError(name) from None


def tool_schemas() -> list[dict[str, Any]]:
    return [tool.schema() for tool in TOOL_REGISTRY.values()]
