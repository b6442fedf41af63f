from __future__ import annotations
import json
import re
from typing import Any, TypeVar

import requests
from pydantic import BaseModel, ValidationError

from content_engine.config.settings import Settings, get_settings
from content_engine.models.errors import ExternalServiceError, ParseError

_JSON_RE = re.compile(r"[\{\[].*[\}\]]", re.DOTALL)
_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")

M = TypeVar("M", bound=BaseModel)


class OllamaClient:
    """
    HTTP client for the local Ollama server: text generation and embeddings.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        s = settings or get_settings()
        self.base_url = s.ollama_base_url.rstrip("/")
        self.model = s.ollama_model
        self.embed_model = s.ollama_embed_model
        self.timeout = s.ollama_timeout_seconds

    def _extract_json(self, text: str) -> Any:
        text = _FENCE_RE.sub("", text.strip())

        # direct JSON
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            pass

        # find first {...} or [...]
        m = _JSON_RE.search(text)
        if not m:
            raise ParseError(f"Model did not return JSON. Raw output: {text[:500]}")

        block = m.group(0)
        try:
            return json.loads(block)
        except json.JSONDecodeError as e:
            raise ParseError(f"Couldn't parse JSON block: {block[:500]}") from e

    def _post(self, path: str, payload: dict) -> dict:
        url = f"{self.base_url}{path}"
        try:
            r = requests.post(url, json=payload, timeout=self.timeout)
            r.raise_for_status()
            data = r.json()
        except requests.RequestException as e:
            raise ExternalServiceError(f"Ollama request to {path} failed: {e}") from e
        except ValueError as e:
            raise ExternalServiceError(f"Ollama returned a non-JSON body for {path}") from e

        if not isinstance(data, dict):
            raise ExternalServiceError(f"Ollama returned {type(data).__name__} instead of an object for {path}")
        return data

    def ping(self) -> bool:
        try:
            r = requests.get(f"{self.base_url}/api/tags", timeout=10)
        except requests.RequestException:
            return False
        return r.status_code == 200

    def generate_text(self, system: str, prompt: str, temperature: float = 0.7) -> str:
        data = self._post(
            "/api/generate",
            {
                "model": self.model,
                "system": system,
                "prompt": prompt,
                "stream": False,
                "options": {"temperature": temperature},
            },
        )
        return _FENCE_RE.sub("", (data.get("response") or "").strip())

    def generate_json(self, system: str, prompt: str, temperature: float = 0.3) -> Any:
        data = self._post(
            "/api/generate",
            {
                "model": self.model,
                "system": system,
                "prompt": f"{prompt}\nReturn ONLY JSON.",
                "format": "json",
                "stream": False,
                "options": {"temperature": temperature},
            },
        )
        return self._extract_json(data.get("response") or "")

    def generate_model(
        self, system: str, prompt: str, schema: type[M], temperature: float = 0.3
    ) -> M:
        """Structured call validated against `schema`; anything else is a ParseError."""
        raw = self.generate_json(system, prompt, temperature=temperature)
        try:
            return schema.model_validate(raw)
        except ValidationError as e:
            raise ParseError(f"{schema.__name__} payload invalid: {e.errors()[:3]}") from e

    def embed(self, text: str) -> list[float]:
        data = self._post("/api/embeddings", {"model": self.embed_model, "prompt": text})
        vec = data.get("embedding")
        if not vec:
            raise ParseError("Ollama returned no embedding")
        return vec
