"""
Inference Service - Chat-completion calls to the language model
"""
from typing import Any, Optional
import json
import logging
import re

from openai import OpenAI, OpenAIError

from docledger.core.config import settings
from docledger.core.exceptions import InferenceError

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def parse_json_reply(text: Optional[str]) -> Optional[Any]:
    """Strict JSON parse of a model reply; None when the reply is not JSON"""
    if not text:
        return None
    cleaned = _FENCE_RE.sub("", text.strip()).strip()
    try:
        return json.loads(cleaned)
    except (json.JSONDecodeError, TypeError):
        return None


class InferenceClient:
    """Thin wrapper over the OpenAI chat-completions API"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        vision_model: Optional[str] = None,
    ):
        self.api_key = api_key or settings.OPENAI_API_KEY
        self.base_url = base_url or settings.OPENAI_BASE_URL
        self.model = model or settings.OPENAI_MODEL
        self.vision_model = vision_model or settings.OPENAI_VISION_MODEL
        self._client = None

    def _get_client(self) -> OpenAI:
        if not self.api_key:
            raise InferenceError("OpenAI API key not configured")
        if self._client is None:
            self._client = OpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=settings.OPENAI_TIMEOUT_SECONDS,
            )
        return self._client

    def complete(
        self,
        system_prompt: str,
        user_text: str,
        image_url: Optional[str] = None,
        max_tokens: int = 2000,
        model: Optional[str] = None,
        temperature: float = 0.1,
    ) -> str:
        """
        Send one system + user turn and return the reply text.

        With ``image_url`` the user turn carries the image reference and the
        vision model is used unless ``model`` is given.
        """
        client = self._get_client()

        if image_url:
            user_content = [
                {"type": "text", "text": user_text},
                {"type": "image_url", "image_url": {"url": image_url}},
            ]
            model = model or self.vision_model
        else:
            user_content = user_text
            model = model or self.model

        try:
            response = client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_content},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except OpenAIError as e:
            logger.warning(f"Inference call to {model} failed: {e}")
            raise InferenceError(f"Inference API error: {e}") from e

        if not response.choices:
            raise InferenceError("Inference API returned no choices")
        return response.choices[0].message.content or ""


def get_inference_client() -> InferenceClient:
    """Dependency providing the inference client"""
    return InferenceClient()
