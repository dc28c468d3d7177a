# coach_api/services/llm_client.py

import logging
from typing import Optional, Protocol

from openai import APITimeoutError, OpenAI, OpenAIError

from coach_api.config import (
    DEFAULT_FEEDBACK_MODEL,
    LLM_TIMEOUT_SECONDS,
    OPENAI_API_KEY,
)

logger = logging.getLogger("coach_api.llm")


class CompletionError(Exception):
    """The completion provider failed; the user may resubmit."""


class CompletionTimeout(CompletionError):
    pass


class CompletionClient(Protocol):
    def complete(
        self,
        system_prompt: str,
        user_message: str,
        max_tokens: int,
    ) -> Optional[str]:
        ...


class OpenAICompletionClient:
    """
    Chat-completions backed client. One call per request, no retries:
    a failure is final for that request.
    """

    def __init__(
        self,
        api_key: Optional[str] = OPENAI_API_KEY,
        model: str = DEFAULT_FEEDBACK_MODEL,
        timeout: float = LLM_TIMEOUT_SECONDS,
    ):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._client: Optional[OpenAI] = None

    def _ensure_client(self) -> OpenAI:
        if not self.api_key:
            raise RuntimeError("OPENAI_API_KEY not set in environment")
        if self._client is None:
            self._client = OpenAI(
                api_key=self.api_key,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    def complete(
        self,
        system_prompt: str,
        user_message: str,
        max_tokens: int,
    ) -> Optional[str]:
        client = self._ensure_client()

        try:
            completion = client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_message},
                ],
                max_completion_tokens=max_tokens,
            )
        except APITimeoutError as exc:
            logger.warning("Completion timed out after %ss (model=%s)", self.timeout, self.model)
            raise CompletionTimeout(str(exc)) from exc
        except OpenAIError as exc:
            logger.error("Completion failed (model=%s): %s", self.model, exc)
            raise CompletionError(str(exc)) from exc

        if not completion.choices:
            return None
        return completion.choices[0].message.content
