"""Client for the AI suggestion service, with deterministic local fallbacks.

The service speaks the chat-completions protocol. Any failure (no API key,
network error, HTTP error, unparseable answer) is logged and answered by a
local heuristic instead, so callers always get a usable result.
"""

import json
import logging
import re
from dataclasses import asdict, dataclass

import httpx

from qda_mcp.config import Config

logger = logging.getLogger(__name__)

# Characters of document context sent along with a selection
MAX_CONTEXT_CHARS = 3000
MAX_SUGGESTIONS = 5

REFINEMENT_TYPES = {"merge", "split", "rename", "group"}

# Fallback vocabulary: suggested code name -> keywords that trigger it
CODE_KEYWORDS: dict[str, list[str]] = {
    "Work-Life Balance": [
        "balance",
        "boundary",
        "boundaries",
        "personal",
        "family",
        "commute",
        "flexibility",
        "separation",
    ],
    "Communication": [
        "communication",
        "email",
        "meeting",
        "call",
        "slack",
        "teams",
        "video",
        "message",
        "chat",
    ],
    "Productivity": [
        "productive",
        "productivity",
        "focus",
        "efficient",
        "efficiency",
        "output",
        "performance",
        "work",
    ],
    "Mental Health": [
        "mental",
        "health",
        "stress",
        "anxiety",
        "isolation",
        "lonely",
        "wellbeing",
        "mood",
        "burnout",
    ],
    "Collaboration": [
        "collaboration",
        "team",
        "together",
        "brainstorm",
        "creative",
        "colleague",
        "collective",
    ],
}

FENCE_PATTERN = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class SuggestionError(Exception):
    """Raised when the suggestion service cannot produce an answer."""


@dataclass
class CodeSuggestion:
    code: str
    confidence: float
    reason: str
    existing_match: str | None = None

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "confidence": self.confidence,
            "reason": self.reason,
            "existingMatch": self.existing_match,
        }


@dataclass
class RefinementSuggestion:
    type: str
    codes: list[str]
    suggestion: str
    reason: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ThemeSuggestion:
    name: str
    description: str
    suggested_codes: list[str]
    summary: str

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "suggestedCodes": list(self.suggested_codes),
            "summary": self.summary,
        }


@dataclass
class Summary:
    meaning: str
    key_excerpts: list[str]
    document_presence: str

    def to_dict(self) -> dict:
        return {
            "meaning": self.meaning,
            "keyExcerpts": list(self.key_excerpts),
            "documentPresence": self.document_presence,
        }


# Local heuristics


def _existing_match(code: str, existing_codes: list[str]) -> str | None:
    lowered = code.lower()
    for existing in existing_codes:
        candidate = existing.lower()
        if candidate in lowered or lowered in candidate:
            return existing
    return None


def keyword_code_suggestions(selected_text: str, existing_codes: list[str]) -> list[CodeSuggestion]:
    """Suggest codes whose keywords occur in the text, best matches first."""
    text = selected_text.lower()
    suggestions = []
    for code, keywords in CODE_KEYWORDS.items():
        matching = [kw for kw in keywords if kw in text]
        if not matching:
            continue
        suggestions.append(
            CodeSuggestion(
                code=code,
                confidence=min(0.95, 0.5 + len(matching) * 0.15),
                reason=f"Contains keywords: {', '.join(matching)}",
                existing_match=_existing_match(code, existing_codes),
            )
        )
    suggestions.sort(key=lambda s: s.confidence, reverse=True)
    return suggestions[:MAX_SUGGESTIONS]


def heuristic_refinements(codes: list[dict]) -> list[RefinementSuggestion]:
    """Propose merging codes where one name contains the other."""
    suggestions = []
    names = [c["name"] for c in codes]
    for i, first in enumerate(names):
        for second in names[i + 1:]:
            a, b = first.lower(), second.lower()
            if a in b or b in a:
                suggestions.append(
                    RefinementSuggestion(
                        type="merge",
                        codes=[first, second],
                        suggestion=f"Merge '{first}' and '{second}'",
                        reason="The names overlap and likely describe the same idea",
                    )
                )
    return suggestions[:MAX_SUGGESTIONS]


def heuristic_themes(codes: list[dict]) -> list[ThemeSuggestion]:
    """Group codes under the keyword categories their names mention."""
    suggestions = []
    for category, keywords in CODE_KEYWORDS.items():
        vocabulary = [category.lower()] + keywords
        members = [
            c["name"]
            for c in codes
            if any(word in c["name"].lower() for word in vocabulary)
        ]
        if len(members) >= 2:
            suggestions.append(
                ThemeSuggestion(
                    name=category,
                    description=f"Codes related to {category.lower()}",
                    suggested_codes=members,
                    summary=f"{len(members)} codes share vocabulary about {category.lower()}",
                )
            )
    return suggestions[:MAX_SUGGESTIONS]


def template_summary(name: str, excerpts: list[str], document_titles: list[str]) -> Summary:
    return Summary(
        meaning=(
            f'"{name}" captures instances related to {name.lower()}. '
            f"Found {len(excerpts)} time(s) across {len(document_titles)} document(s)."
        ),
        key_excerpts=[e[:100] + "..." for e in excerpts[:3]],
        document_presence=f"Found in: {', '.join(document_titles)}",
    )


# Parsing of service answers


def _parse_json_answer(content: str):
    text = FENCE_PATTERN.sub("", content.strip())
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise SuggestionError(f"Suggestion service returned invalid JSON: {e}") from e


def _as_list(payload) -> list:
    if not isinstance(payload, list):
        raise SuggestionError("Suggestion service did not return a JSON array")
    return payload


class SuggestionClient:
    """Requests code, refinement and theme suggestions from the AI service."""

    def __init__(self, config: Config, transport: httpx.BaseTransport | None = None):
        """Initialize the client.

        Args:
            config: Config with the AI service settings.
            transport: Optional httpx transport (tests use ``httpx.MockTransport``).
        """
        self._config = config
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self._config.ai_api_key)

    def _chat(self, system: str, prompt: str, temperature: float = 0.7) -> str:
        """Send one chat-completions request and return the answer text."""
        if not self.enabled:
            raise SuggestionError("AI API key not configured")

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._config.ai_api_key}",
        }
        body = {
            "model": self._config.ai_model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "temperature": temperature,
            "max_tokens": 1000,
        }
        try:
            with httpx.Client(timeout=self._config.ai_timeout, transport=self._transport) as client:
                response = client.post(self._config.ai_api_url, json=body, headers=headers)
        except httpx.TimeoutException as e:
            raise SuggestionError("Suggestion request timed out") from e
        except httpx.RequestError as e:
            raise SuggestionError(f"Suggestion request failed: {e}") from e

        if not 200 <= response.status_code < 300:
            raise SuggestionError(
                f"Suggestion service error: HTTP {response.status_code}: {response.text[:200]}"
            )
        try:
            return response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise SuggestionError(f"Unexpected suggestion response shape: {e}") from e

    def suggest_codes(
        self,
        selected_text: str,
        existing_codes: list[str],
        document_text: str | None = None,
    ) -> list[CodeSuggestion]:
        """Ranked code suggestions for a selection.

        Args:
            selected_text: The highlighted text.
            existing_codes: Names of the study's codes.
            document_text: Optional full document for context.
        """
        context = ""
        if document_text:
            context = (
                "\n\nFull document context for reference:\n"
                f"{document_text[:MAX_CONTEXT_CHARS]}..."
            )
        prompt = (
            "You are a qualitative data analysis expert. Analyze the following selected "
            "text and suggest 3-5 relevant codes for qualitative coding.\n\n"
            f'Selected text: "{selected_text}"{context}\n\n'
            f"Existing codes: {', '.join(existing_codes) if existing_codes else 'None yet'}\n\n"
            "Return a JSON array of suggestions with this exact format:\n"
            '[{"code": "Code Name", "confidence": 0.85, '
            '"reason": "Brief explanation of why this code fits", '
            '"existingMatch": "ExistingCodeName or null"}]\n\n'
            "Return only the JSON array, no other text."
        )
        try:
            answer = self._chat(
                "You are a qualitative research assistant specializing in coding "
                "interview transcripts and documents.",
                prompt,
            )
            suggestions = []
            for item in _as_list(_parse_json_answer(answer)):
                confidence = float(item.get("confidence", 0))
                suggestions.append(
                    CodeSuggestion(
                        code=str(item["code"]),
                        confidence=max(0.0, min(1.0, confidence)),
                        reason=str(item.get("reason", "")),
                        existing_match=item.get("existingMatch") or None,
                    )
                )
            suggestions.sort(key=lambda s: s.confidence, reverse=True)
            return suggestions
        except (SuggestionError, KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("Code suggestions unavailable, using keyword fallback: %s", e)
            return keyword_code_suggestions(selected_text, existing_codes)

    def suggest_refinements(self, codes: list[dict]) -> list[RefinementSuggestion]:
        """Codebook refinements for ``[{name, frequency, documentCount}]``."""
        listing = "\n".join(
            f'- "{c["name"]}" ({c.get("frequency", 0)} excerpts, '
            f'{c.get("documentCount", 0)} documents)'
            for c in codes
        )
        prompt = (
            "Analyze these qualitative codes and suggest refinements (merge similar "
            "codes, split broad codes, rename unclear ones, or group related codes):\n\n"
            f"Codes:\n{listing}\n\n"
            "Return a JSON array of up to 5 suggestions with this format:\n"
            '[{"type": "merge|split|rename|group", "codes": ["Code1", "Code2"], '
            '"suggestion": "Brief action to take", '
            '"reason": "Why this refinement makes sense"}]\n\n'
            "Return only the JSON array."
        )
        try:
            answer = self._chat(
                "You are a qualitative research expert helping refine a codebook.",
                prompt,
                temperature=0.5,
            )
            suggestions = []
            for item in _as_list(_parse_json_answer(answer)):
                if item.get("type") not in REFINEMENT_TYPES:
                    continue
                suggestions.append(
                    RefinementSuggestion(
                        type=item["type"],
                        codes=[str(name) for name in item.get("codes", [])],
                        suggestion=str(item.get("suggestion", "")),
                        reason=str(item.get("reason", "")),
                    )
                )
            return suggestions[:MAX_SUGGESTIONS]
        except (SuggestionError, KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("Refinement suggestions unavailable, using fallback: %s", e)
            return heuristic_refinements(codes)

    def suggest_themes(self, codes: list[dict]) -> list[ThemeSuggestion]:
        """Theme groupings for ``[{name, frequency}]``."""
        listing = "\n".join(
            f'- "{c["name"]}" ({c.get("frequency", 0)} excerpts)' for c in codes
        )
        prompt = (
            "Based on these qualitative codes, suggest 3-5 overarching themes that "
            f"group related codes together:\n\nCodes:\n{listing}\n\n"
            "Return a JSON array with this format:\n"
            '[{"name": "Theme Name", "description": "What this theme encompasses", '
            '"suggestedCodes": ["Code1", "Code2", "Code3"], '
            '"summary": "Brief explanation of the theme"}]\n\n'
            "Return only the JSON array."
        )
        try:
            answer = self._chat(
                "You are a qualitative research expert identifying themes from codes.",
                prompt,
                temperature=0.6,
            )
            return [
                ThemeSuggestion(
                    name=str(item["name"]),
                    description=str(item.get("description", "")),
                    suggested_codes=[str(name) for name in item.get("suggestedCodes", [])],
                    summary=str(item.get("summary", "")),
                )
                for item in _as_list(_parse_json_answer(answer))
            ]
        except (SuggestionError, KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("Theme suggestions unavailable, using fallback: %s", e)
            return heuristic_themes(codes)

    def summarize(
        self,
        kind: str,
        name: str,
        excerpts: list[str],
        document_titles: list[str],
    ) -> Summary:
        """Summarize what a code or theme means based on its excerpts."""
        samples = "\n\n".join(excerpts[:5])
        prompt = (
            f'Summarize this {kind} "{name}" based on the coded excerpts:\n\n'
            f"Excerpts ({len(excerpts)} total):\n{samples}\n\n"
            f"Found in documents: {', '.join(document_titles)}\n\n"
            "Format as JSON:\n"
            f'{{"meaning": "What this {kind} represents...", '
            '"keyExcerpts": ["excerpt 1", "excerpt 2"], '
            '"documentPresence": "Description of where it appears"}'
        )
        try:
            answer = self._chat(
                "You are a qualitative research assistant providing insights on coded data.",
                prompt,
            )
            payload = _parse_json_answer(answer)
            return Summary(
                meaning=str(payload["meaning"]),
                key_excerpts=[str(e) for e in payload.get("keyExcerpts", [])],
                document_presence=str(payload.get("documentPresence", "")),
            )
        except (SuggestionError, KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("Summary unavailable, using template: %s", e)
            return template_summary(name, excerpts, document_titles)
