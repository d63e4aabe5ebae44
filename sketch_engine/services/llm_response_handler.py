"""
LLM Response Handler - Pull the text out of provider message content
"""

import logging
from typing import Any, List

logger = logging.getLogger(__name__)


class LLMResponseHandler:
    """
    Flatten provider message content into plain text.

    Chat-completion providers return either a string, a list of typed content
    parts, or SDK block objects. Only text parts are kept.
    """

    # Part types that never carry generated code
    EXCLUDED_PARTS = [
        'thinking',
        'redacted_thinking',
        'thought',
        'reasoning',
        'tool_use',
        'metadata'
    ]

    @staticmethod
    def extract_text(content: Any) -> str:
        """
        Extract text from message content

        Args:
            content: String, list of parts (dicts or SDK blocks), or a single part

        Returns:
            Concatenated text, or "" when there is none
        """
        if content is None:
            return ""

        if isinstance(content, str):
            return content

        if isinstance(content, list):
            return "".join(LLMResponseHandler._part_text(part) for part in content)

        return LLMResponseHandler._part_text(content)

    @staticmethod
    def _part_text(part: Any) -> str:
        """Text of a single content part, "" for excluded or unknown parts"""
        if isinstance(part, str):
            return part

        if isinstance(part, dict):
            part_type = part.get("type", "text")
            text = part.get("text")
        else:
            part_type = getattr(part, "type", "text")
            text = getattr(part, "text", None)

        if part_type in LLMResponseHandler.EXCLUDED_PARTS:
            logger.debug(f"Skipping non-text content part: {part_type}")
            return ""

        return text if isinstance(text, str) else ""

    @staticmethod
    def detect_non_text_parts(content: Any) -> List[str]:
        """List the excluded part types present in the content"""
        if not isinstance(content, list):
            return []

        detected = []
        for part in content:
            part_type = part.get("type") if isinstance(part, dict) else getattr(part, "type", None)
            if part_type in LLMResponseHandler.EXCLUDED_PARTS:
                detected.append(part_type)

        return sorted(set(detected))

    @staticmethod
    def handle_response(content: Any) -> str:
        """
        Main entry point for provider message content

        Returns:
            Stripped text, "" when nothing usable remains
        """
        non_text_parts = LLMResponseHandler.detect_non_text_parts(content)
        if non_text_parts:
            logger.warning(
                f"Detected non-text parts in LLM response: {non_text_parts}. "
                f"These will be filtered out."
            )

        text = LLMResponseHandler.extract_text(content).strip()

        if not text:
            logger.warning("LLM response contains no text content")
            return ""

        logger.info(f"LLM response extracted ({len(text)} chars)")
        return text
