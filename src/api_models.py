import logging
import os
from abc import ABC, abstractmethod
from typing import Optional

import google.generativeai as genai
import requests

from constants import GEMINI_MODEL, GROQ_API_URL, GROQ_MODEL, MODEL_PROVIDER

logger = logging.getLogger(__name__)


class ModelRequestError(RuntimeError):
    """The remote model could not be reached or answered with an error."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class Model(ABC):
    provider = "model"

    def __init__(self, model_name):
        self.model_name = model_name

    @abstractmethod
    def call_model(self, user_prompt, system_prompt=None):
        pass


class GroqModel(Model):
    """Chat-completions client for Groq's OpenAI-compatible endpoint."""

    provider = "groq"

    def __init__(self, api_key, model_name=GROQ_MODEL, *, temperature=0.5, max_tokens=700, timeout=30, session=None):
        super().__init__(model_name)
        if not api_key:
            raise EnvironmentError("Set GROQ_API_KEY to use Groq suggestions.")
        self.api_key = api_key
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.session = session or requests.Session()

    def call_model(self, user_prompt, system_prompt=None):
        messages = []
        if system_prompt is not None:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_prompt})
        body = {
            "model": self.model_name,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "messages": messages,
        }
        try:
            response = self.session.post(
                GROQ_API_URL,
                json=body,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise ModelRequestError(f"Groq request failed: {exc}") from exc

        if not response.ok:
            raise ModelRequestError(f"Groq returned HTTP {response.status_code}", status_code=response.status_code)

        try:
            payload = response.json()
        except ValueError as exc:
            raise ModelRequestError("Groq returned a non-JSON body") from exc
        if not isinstance(payload, dict):
            raise ModelRequestError(f"Groq returned an unexpected {type(payload).__name__} body")
        choices = payload.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            raise ModelRequestError("Groq response has no choices")
        message = choices[0].get("message")
        content = message.get("content") if isinstance(message, dict) else None
        return content if isinstance(content, str) else ""


class GeminiModel(Model):
    provider = "gemini"

    def __init__(self, api_key, model_name=GEMINI_MODEL):
        super().__init__(model_name)
        if not api_key:
            raise EnvironmentError("Set GEMINI_API_KEY to use Gemini suggestions.")
        genai.configure(api_key=api_key)
        self.model = genai.GenerativeModel(self.model_name)

    def call_model(self, user_prompt, system_prompt=None):
        messages = []
        if system_prompt is not None:
            messages.append({"role": "user", "parts": [system_prompt]})
            messages.append({"role": "model", "parts": ["Understood."]})
        messages.append({"role": "user", "parts": [user_prompt]})
        try:
            response = self.model.generate_content(messages)
            return response.text or ""
        except Exception as exc:
            # The Gemini SDK raises a mix of google.api_core and ValueError types.
            raise ModelRequestError(f"Gemini request failed: {exc}") from exc


def create_model(provider: Optional[str] = None) -> Optional[Model]:
    """Build the configured suggestion model, or None when no key is set."""
    provider = (provider if provider is not None else MODEL_PROVIDER) or ""
    groq_key = os.environ.get("GROQ_API_KEY", "").strip()
    gemini_key = os.environ.get("GEMINI_API_KEY", "").strip()

    if provider in ("", "groq") and groq_key:
        return GroqModel(groq_key)
    if provider in ("", "gemini") and gemini_key:
        return GeminiModel(gemini_key)
    if provider not in ("", "groq", "gemini"):
        logger.warning("Unknown model provider %r; using heuristic suggestions.", provider)
    return None
