"""
CallGuard: Classifier Gate

Two layers, cheapest first:
  1. Lexical gate: case-insensitive trigger phrase match, pure and instant.
  2. LLM classifier: single-turn chat completion answering `Y` or `N`,
     only reached by fragments that passed the gate.

The classifier sits behind the TextClassifier protocol so the gate's
trigger/suppress logic is testable with a deterministic stub.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from openai import AsyncOpenAI, OpenAIError

from ..core.config import ClassifierConfig, classifier_cfg, SessionConfig, session_cfg
from ..core.errors import ClassifierError
from ..core.interfaces import TextClassifier
from ..core.models import Verdict

logger = logging.getLogger("callguard.classifier")


def parse_verdict(reply: Optional[str]) -> Verdict:
    """`Y` (any case, surrounding whitespace ignored) is the only positive answer."""
    if reply and reply.strip().upper() == "Y":
        return Verdict.FRAUD_SUSPECTED
    return Verdict.NOT_SUSPECTED


# ---------------------------------------------------------------------------
# OpenAI backend
# ---------------------------------------------------------------------------

class OpenAIClassifier:
    """Asks a chat model whether a transcript fragment looks like a scam."""

    def __init__(
        self,
        client: Any = None,
        config: ClassifierConfig = classifier_cfg,
    ) -> None:
        self._config = config
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            try:
                self._client = AsyncOpenAI(api_key=self._config.openai_api_key or None)
            except OpenAIError as e:
                raise ClassifierError(f"OpenAI client unavailable: {e}") from e
        return self._client

    async def classify(self, text: str) -> Verdict:
        client = self._get_client()
        try:
            completion = await client.chat.completions.create(
                model=self._config.model,
                messages=[
                    {"role": "system", "content": self._config.system_prompt},
                    {"role": "user", "content": text},
                ],
                max_tokens=self._config.max_tokens,
                temperature=self._config.temperature,
            )
        except OpenAIError as e:
            raise ClassifierError(f"Classifier request failed: {e}") from e

        try:
            reply = completion.choices[0].message.content
        except (AttributeError, IndexError) as e:
            raise ClassifierError(f"Unexpected classifier response: {e}") from e

        logger.info(f"🤖 Classifier reply: {reply!r}")
        return parse_verdict(reply)


# ---------------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------------

class ClassifierGate:
    """
    Decides which transcript fragments are worth classifying and runs the
    classifier for them. Holds no per-call state, one gate serves every session.
    """

    def __init__(
        self,
        classifier: TextClassifier,
        config: SessionConfig = session_cfg,
    ) -> None:
        self._classifier = classifier
        self._trigger = config.trigger_phrase.strip().lower()

    @property
    def trigger_phrase(self) -> str:
        return self._trigger

    def should_classify(self, text: str) -> bool:
        if not self._trigger or not text:
            return False
        return self._trigger in text.lower()

    async def classify(self, text: str) -> Verdict:
        """Raises ClassifierError; never retries."""
        try:
            return await self._classifier.classify(text)
        except ClassifierError:
            raise
        except Exception as e:
            raise ClassifierError(f"{type(e).__name__}: {e}") from e
