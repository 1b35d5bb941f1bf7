import json
import logging
import re

from anthropic import AsyncAnthropic

from app.exceptions.custom import AnalysisError

logger = logging.getLogger(__name__)

MODEL = "claude-sonnet-4-20250514"


class ClaudeService:
    """Thin wrapper over the Messages API.

    Failures are logged and turned into ``None`` unless ``raise_errors`` is
    set, in which case they surface as ``AnalysisError`` so callers can retry.
    """

    def __init__(self, api_key: str):
        self._client = AsyncAnthropic(api_key=api_key)

    async def analyze(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 8192,
        raise_errors: bool = False,
    ) -> dict | None:
        try:
            response = await self._client.messages.create(
                model=MODEL,
                max_tokens=max_tokens,
                system=system_prompt,
                messages=[{"role": "user", "content": user_prompt}],
            )
            text = response.content[0].text
        except Exception as exc:
            if raise_errors:
                raise AnalysisError(f"Claude API call failed: {exc}") from exc
            logger.exception("Claude API call failed")
            return None
        return self._try_parse_json(text)

    async def complete(
        self,
        system_prompt: str,
        messages: list[dict],
        max_tokens: int = 1024,
        raise_errors: bool = False,
    ) -> str | None:
        try:
            response = await self._client.messages.create(
                model=MODEL,
                max_tokens=max_tokens,
                system=system_prompt,
                messages=messages,
            )
            text = response.content[0].text.strip()
        except Exception as exc:
            if raise_errors:
                raise AnalysisError(f"Claude API call failed: {exc}") from exc
            logger.exception("Claude API call failed")
            return None
        return text or None

    @staticmethod
    def _try_parse_json(text: str) -> dict | None:
        # Strip markdown fences
        stripped = re.sub(r"```(?:json)?\s*", "", text).strip().rstrip("`")

        try:
            obj = json.loads(stripped)
            if isinstance(obj, dict):
                return obj
        except (json.JSONDecodeError, ValueError):
            pass

        # Fallback: outermost braces, the object may be nested
        start, end = stripped.find("{"), stripped.rfind("}")
        if start != -1 and end > start:
            try:
                obj = json.loads(stripped[start : end + 1])
                if isinstance(obj, dict):
                    return obj
            except (json.JSONDecodeError, ValueError):
                pass

        return None
