"""Abstract base class for suggestion detectors.

This module defines the contract the chat core relies on. The abstraction hides:
- How payloads are located (code fences, raw JSON, legacy wrappers)
- Which payload shapes are accepted for a mode
- How payloads and generation flags are stripped from display text
"""

import json
import logging
import re
from abc import ABC, abstractmethod

from pydantic import ValidationError

from .models import ChatMode, DetectionContext, Suggestion
from .text import CODE_FENCE, apply_until_stable, strip_partial_sentinel, strip_sentinels

logger = logging.getLogger(__name__)


class SuggestionDetector(ABC):
    """Finds one structured suggestion in assistant text.

    Detectors are pure with respect to conversation state: they read the text
    and the identity context they are given and return new values only.
    """

    def detect(self, text: str, context: DetectionContext | None = None) -> Suggestion | None:
        """Detect a suggestion in the complete assistant text.

        Args:
            text: Full assistant message, including any payload
            context: Caller identity (user id, message id)

        Returns:
            The parsed suggestion, or None when no valid payload is present
        """
        payload = self.extract_payload(text)
        if payload is None:
            logger.debug("No %s payload found in text of length %d", self.mode.value, len(text))
            return None

        try:
            data = json.loads(payload)
        except (ValueError, RecursionError) as e:
            logger.debug("Failed to parse %s payload: %s", self.mode.value, e)
            return None

        if not isinstance(data, dict):
            logger.debug("Ignoring non-object %s payload", self.mode.value)
            return None

        try:
            suggestion = self.build(data, context or DetectionContext())
        except ValidationError as e:
            logger.debug("Invalid %s payload: %s", self.mode.value, e.errors())
            return None

        logger.info("Detected %s suggestion: %s", self.mode.value, suggestion.name)
        return suggestion

    def clean_text(self, text: str) -> str:
        """Remove payloads and generation flags from complete text.

        Idempotent: ``clean_text(clean_text(x)) == clean_text(x)``. Never raises.
        """
        return apply_until_stable(self._clean_once, text)

    def clean_streaming_text(self, text: str) -> str:
        """Hide a payload that is still arriving.

        Cuts at the first code fence, or at the first ``{`` once a payload key
        has appeared, so partial JSON never reaches the display.
        """
        return apply_until_stable(self._clean_streaming_once, text)

    def _clean_streaming_once(self, text: str) -> str:
        text = strip_partial_sentinel(strip_sentinels(text))

        fence = text.find(CODE_FENCE)
        if fence != -1:
            return text[:fence].strip()

        if self.payload_key_pattern.search(text):
            brace = text.find("{")
            if brace != -1:
                return text[:brace].strip()

        # A fence may still be arriving one backtick at a time
        if text.endswith("`"):
            return text.rstrip("`").rstrip()

        return text

    @property
    @abstractmethod
    def mode(self) -> ChatMode:
        """The chat mode this detector serves."""

    @property
    @abstractmethod
    def payload_key_pattern(self) -> re.Pattern[str]:
        """Pattern for keys that mark the start of this mode's payload."""

    @abstractmethod
    def extract_payload(self, text: str) -> str | None:
        """Return the JSON text of the payload, or None."""

    @abstractmethod
    def build(self, data: dict, context: DetectionContext) -> Suggestion:
        """Turn a decoded payload into a suggestion.

        Raises:
            ValidationError: If the payload does not match this mode's shape
        """

    @abstractmethod
    def _clean_once(self, text: str) -> str:
        """One shrinking cleanup pass over complete text."""
