"""
Gemini API Client
Text analysis for safety reports, chat summaries, translation and shift briefings.
Every call is best effort: failures are logged and come back as ``None``.
"""
import json
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from ..config import Settings, settings as default_settings
from ..logging import get_logger
from ..models.entities import ChatMessage, ExtractedEntities, PortalModel, Task


logger = get_logger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

LANGUAGES = {"en": "English", "ar": "Arabic"}

_STRING_LIST = {"type": "ARRAY", "items": {"type": "STRING"}}

SAFETY_ANALYSIS_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "summary": {"type": "STRING", "description": "Brief summary of the incident and recommended actions."},
        "entities": {
            "type": "OBJECT",
            "properties": {
                "locations": {**_STRING_LIST, "description": "Gates, stands, terminals, or ramp areas mentioned."},
                "equipment": {
                    **_STRING_LIST,
                    "description": "Aircraft, ground support equipment, vehicles, or tools mentioned.",
                },
                "personnel": {**_STRING_LIST, "description": "Specific staff names or roles mentioned."},
            },
            "required": ["locations", "equipment", "personnel"],
        },
    },
    "required": ["summary", "entities"],
}


class SafetyAnalysis(PortalModel):
    summary: str
    entities: ExtractedEntities


class AnalysisClient:
    """Client for the Gemini generateContent endpoint"""

    def __init__(self, cfg: Optional[Settings] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.cfg = cfg or default_settings
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.cfg.gemini_api_key)

    async def _generate(self, prompt: str, schema: Optional[Dict[str, Any]] = None) -> Optional[str]:
        """Run one prompt and return the model's text, or None when anything goes wrong"""
        if not self.enabled:
            logger.info("analysis_disabled")
            return None
        body: Dict[str, Any] = {"contents": [{"parts": [{"text": prompt}]}]}
        if schema is not None:
            body["generationConfig"] = {"responseMimeType": "application/json", "responseSchema": schema}
        url = f"{GEMINI_BASE_URL}/models/{self.cfg.gemini_model}:generateContent"
        try:
            async with httpx.AsyncClient(timeout=self.cfg.analysis_timeout_s, transport=self._transport) as client:
                response = await client.post(url, params={"key": self.cfg.gemini_api_key}, json=body)
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("analysis_request_failed", model=self.cfg.gemini_model, error=str(e))
            return None
        try:
            parts = data["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError):
            logger.warning("analysis_empty_response", model=self.cfg.gemini_model)
            return None
        text = "".join(part.get("text", "") for part in parts).strip()
        return text or None

    async def analyze_safety_report(self, description: str) -> Optional[SafetyAnalysis]:
        prompt = (
            "Analyze the following airport safety report. Provide a professional analysis summary and "
            "extract all mentioned locations, equipment, and personnel into structured lists.\n"
            f'Report: "{description}"'
        )
        text = await self._generate(prompt, SAFETY_ANALYSIS_SCHEMA)
        if text is None:
            return None
        try:
            return SafetyAnalysis.model_validate(json.loads(text))
        except (ValueError, ValidationError) as e:
            logger.warning("analysis_unparseable", error=str(e))
            return None

    async def translate(self, text: str, target_lang: str) -> Optional[str]:
        language = LANGUAGES.get(target_lang, "English")
        prompt = (
            f'Translate the following airport ground operations text to {language}: "{text}". '
            "Return only the translated text."
        )
        return await self._generate(prompt)

    async def summarize_chat(self, messages: List[ChatMessage]) -> Optional[str]:
        if not messages:
            return None
        conversation = "\n".join(f"{m.sender_name}: {m.text}" for m in messages)
        prompt = (
            "Summarize this airport ground operations chat log into a single concise paragraph focusing on "
            f"key actions and status updates: \n\n{conversation}"
        )
        return await self._generate(prompt)

    async def shift_briefing(self, tasks: List[Task]) -> Optional[str]:
        if not tasks:
            return None
        listing = ", ".join(f"{t.title} at {t.location} ({t.status.value})" for t in tasks)
        prompt = f"Summarize these current ground operations tasks into a 30-second shift briefing for airport staff: {listing}"
        return await self._generate(prompt)
