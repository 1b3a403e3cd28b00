from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..config import AISettings, load_ai_settings
from ..domain.models import Banknote
from ..domain.normalize import clean_text, normalize_value
from ..logging import get_logger
from .ai_clients import (
    AIConfigurationError,
    AIServiceError,
    build_client,
    parse_json_text,
)
from .images import ImageDataError, parse_data_url


LOG = get_logger("catalog-ai")

NO_HISTORY_TEXT = "Sem dados históricos."
HISTORY_ERROR_TEXT = "Erro na pesquisa."


@dataclass
class HistoricalContext:
    text: str
    sources: List[Dict[str, str]] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {"text": self.text, "sources": list(self.sources)}


def _extraction_schema() -> Dict[str, Any]:
    def s(description: str) -> Dict[str, Any]:
        return {"type": "string", "description": description}

    return {
        "type": "object",
        "properties": {
            "pickId": s("Pick / Standard Catalog of World Paper Money number"),
            "country": s("Issuing country"),
            "authority": s("Central bank or issuing authority"),
            "currency": s("Currency name"),
            "denomination": s("Numeric face value"),
            "issueDate": s("Year or full issue date"),
            "material": s("Papel, Polímero or Híbrido"),
            "size": s("Approximate dimensions in mm"),
            "estimatedValue": s("Estimated market value in EUR (digits only)"),
            "type": s("Circulação, Comemorativa, Espécime, ..."),
            "setDetails": s("Short description of the series or set, if any"),
            "comments": s("A short historical curiosity or rarity detail found while searching"),
        },
    }


def _extraction_prompt() -> str:
    return (
        "Analyse this banknote image in depth.\n"
        "1. Identify every technical detail (Pick ID, country, issuing authority, currency, "
        "face value, year, material, size).\n"
        "2. Use web search to find the current average commercial value in Euros (€) for this "
        "item on the numismatic market.\n"
        "3. Identify whether it belongs to a specific series or set.\n"
        "Answer in Portuguese where free text is needed. Return ONLY a single JSON object with "
        "the keys pickId, country, authority, currency, denomination, issueDate, material, size, "
        "estimatedValue, type, setDetails, comments. All values are strings."
    )


def _value_prompt(note: Banknote) -> str:
    return (
        "What is the approximate market value in Euros (€) for this banknote:\n"
        f"Country: {note.country}, Denomination: {note.denomination} {note.currency}, "
        f"Year: {note.issue_date}, Pick ID: {note.pick_id}, Grade: {note.grade}.\n"
        "Return only the average numeric value."
    )


def _history_prompt(note: Banknote) -> str:
    return (
        "Fatos históricos e raridade: "
        f"{note.denomination} {note.currency} - {note.country} ({note.pick_id})."
    )


class BanknoteAIService:
    """Metadata extraction, valuation, history lookup and image edits via a hosted model."""

    def __init__(self, client: Any, settings: AISettings) -> None:
        self.client = client
        self.settings = settings

    @classmethod
    def from_settings(cls, settings: Optional[AISettings] = None, *, dotenv_dir: Optional[str] = None) -> "BanknoteAIService":
        settings = settings or load_ai_settings(dotenv_dir)
        return cls(build_client(settings), settings)

    def close(self) -> None:
        closer = getattr(self.client, "close", None)
        if callable(closer):
            closer()

    def extract_banknote_data(self, image_data_url: str) -> Optional[Dict[str, str]]:
        """Identify the note in an image; returns a partial record (JSON keys) or None."""
        try:
            mime, _ = parse_data_url(image_data_url)
        except ImageDataError as exc:
            raise AIServiceError(f"cannot send image for extraction: {exc}") from exc
        schema = _extraction_schema()
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "image_url", "image_url": {"url": image_data_url}},
                    {"type": "text", "text": _extraction_prompt()},
                ],
            }
        ]
        LOG.info("Extracting banknote data (model=%s, mime=%s)", self.settings.extract_model, mime)
        try:
            completion = self.client.chat(
                messages,
                model=self.settings.extract_model,
                json_schema=schema,
                web_search=True,
            )
        except AIServiceError:
            LOG.exception("Banknote extraction failed")
            raise
        except Exception as exc:
            LOG.exception("Banknote extraction failed unexpectedly")
            raise AIServiceError(f"extraction failed: {exc}") from exc

        if not completion.text:
            LOG.warning("Extraction returned no text")
            return None
        data = parse_json_text(completion.text)
        if not isinstance(data, dict):
            LOG.error("Extraction output is not a JSON object; first 300 chars: %r", completion.text[:300])
            raise AIServiceError("model did not return a JSON object")

        allowed = schema["properties"].keys()
        result = {k: clean_text(v) for k, v in data.items() if k in allowed and clean_text(v)}
        if "estimatedValue" in result:
            value = normalize_value(result["estimatedValue"])
            if value:
                result["estimatedValue"] = value
            else:
                result.pop("estimatedValue")
        LOG.info("Extracted %d field(s): %s", len(result), sorted(result))
        return result

    def estimate_market_value(self, note: Banknote) -> Optional[str]:
        """Average market value in EUR as a numeric string, or None."""
        try:
            completion = self.client.chat(
                [{"role": "user", "content": _value_prompt(note)}],
                model=self.settings.value_model,
                web_search=True,
            )
        except Exception as exc:
            LOG.warning("Value estimate failed for %s: %s", note.id, exc)
            return None
        value = normalize_value((completion.text or "").strip())
        LOG.info("Value estimate for %s: %s", note.id, value)
        return value

    def get_historical_context(self, note: Banknote) -> HistoricalContext:
        try:
            completion = self.client.chat(
                [{"role": "user", "content": _history_prompt(note)}],
                model=self.settings.history_model,
                web_search=True,
            )
        except Exception as exc:
            LOG.warning("History lookup failed for %s: %s", note.id, exc)
            return HistoricalContext(text=HISTORY_ERROR_TEXT, sources=[])
        return HistoricalContext(text=completion.text or NO_HISTORY_TEXT, sources=list(completion.citations))

    def edit_image(self, image_data_url: str, prompt: str) -> Optional[str]:
        """Apply a text instruction to an image; returns a data URL or None."""
        if not prompt or not prompt.strip():
            raise ValueError("an edit prompt is required")
        try:
            parse_data_url(image_data_url)
        except ImageDataError as exc:
            raise AIServiceError(f"cannot send image for editing: {exc}") from exc
        LOG.info("Editing image with model=%s", self.settings.image_model)
        try:
            edited = self.client.edit_image(image_data_url, prompt.strip(), model=self.settings.image_model)
        except AIServiceError:
            raise
        except Exception as exc:
            LOG.exception("Image edit failed unexpectedly")
            raise AIServiceError(f"image edit failed: {exc}") from exc
        if not edited:
            LOG.warning("Image edit returned no image part")
        return edited


__all__ = [
    "AIConfigurationError",
    "AIServiceError",
    "BanknoteAIService",
    "HistoricalContext",
    "NO_HISTORY_TEXT",
    "HISTORY_ERROR_TEXT",
]
