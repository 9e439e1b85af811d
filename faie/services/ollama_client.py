from __future__ import annotations
import requests
from faie.config.settings import Settings, get_settings
import json
import re
from typing import Any

_JSON_RE = re.compile(r"(\{.*\}|\[.*\])", re.DOTALL)
_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


class OllamaClient:
    """
    HTTP client for a local Ollama server (chat + embeddings).
    """

    def __init__(self, settings: Settings | None = None) -> None:
        s = settings or get_settings()
        self.base_url = s.ollama_base_url.rstrip("/")
        self.model = s.ollama_model
        self.embed_model = s.ollama_embed_model
        self.temperature = s.ollama_temperature
        self.timeout = s.ollama_timeout

    def _extract_json(self, text: str) -> Any:
        text = _FENCE_RE.sub("", text).strip()

        # direct JSON
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            pass

        # find first {...} or [...]
        m = _JSON_RE.search(text)
        if not m:
            raise ValueError(f"Model did not return JSON.\nRaw output:\n{text[:2000]}")

        block = m.group(0)
        try:
            return json.loads(block)
        except json.JSONDecodeError as e:
            raise ValueError(f"Couldn't parse JSON block:\n{block[:2000]}") from e

    def chat(self, system: str, user: str) -> str:
        """
        Single non-streaming chat turn. Returns the assistant text.
        Raises requests.HTTPError / ConnectionError when the server is unreachable.
        """
        url = f"{self.base_url}/api/chat"
        payload = {
            "model": self.model,
            "stream": False,
            "options": {"temperature": self.temperature},
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
        }
        r = requests.post(url, json=payload, timeout=self.timeout)
        r.raise_for_status()
        return r.json()["message"]["content"]

    def chat_json(self, system: str, user: str) -> Any:
        return self._extract_json(self.chat(system, f"{user}\nReturn ONLY JSON."))

    def embed(self, text: str) -> list[float]:
        url = f"{self.base_url}/api/embeddings"
        payload = {"model": self.embed_model, "prompt": text}
        r = requests.post(url, json=payload, timeout=self.timeout)
        r.raise_for_status()
        return r.json()["embedding"]

    def ping(self) -> bool:
        r = requests.get(f"{self.base_url}/api/tags", timeout=10)
        return r.status_code == 200
