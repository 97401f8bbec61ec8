"""Vision model providers and the image analysis adapter.

Both google-genai and openai SDKs are sync, so providers wrap the calls with
asyncio.to_thread, retry transient errors with exponential backoff and bound
the whole call (retries included) with asyncio.wait_for.

``ImageAnalyzer`` is what the orchestrator talks to. Its ``analyze`` never
raises: every failure comes back as an ``AnalysisResult`` with
``success=False`` and a reason.
"""
import asyncio
import json
import logging
import mimetypes
import random
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Tuple, Type
from urllib.parse import urlsplit

from snaptag.services.errors import safe_error_message

logger = logging.getLogger(__name__)

MAX_TAGS = 10
DEFAULT_TAG_STYLE = "neutral"

TAG_STYLES: Dict[str, Dict[str, str]] = {
    "neutral": {
        "name": "Neutral",
        "instruction": (
            "Generate a concise list of 5 neutral tags that accurately describe the content, "
            "setting, and main objects in the image. Use short, clear, factual terms. Avoid "
            "emotional, opinionated, or marketing words. Example tags: mountain, sunset, lake, "
            "reflection, trees, nature, landscape."
        ),
    },
    "playful": {
        "name": "Playful",
        "instruction": (
            "Generate 5 playful, expressive tags that describe this image with energy or humor. "
            "Feel free to include slang or short phrases if appropriate. Combine literal and "
            "imaginative tags. Example tags: sunset vibes, wanderlust, weekend chill, good times, "
            "nature mood."
        ),
    },
    "seo": {
        "name": "SEO",
        "instruction": (
            "Generate 5 SEO-friendly tags for this image. Use specific, searchable keywords and "
            "long-tail phrases that people might use to find this image online. Include variations "
            "of relevant terms (synonyms, categories, etc.). Avoid hashtags or emojis. Example tags: "
            "cozy coffee shop interior, cafe with warm lighting, people drinking coffee, modern cafe design."
        ),
    },
}

ANALYSIS_PROMPT = """Analyze this image and provide:
1. A detailed, engaging description of what you see (1-2 sentences)
2. {instruction}

Format your response as JSON:
{{
  "description": "Your description here",
  "tags": ["tag1", "tag2", "tag3", "tag4", "tag5"]
}}"""

ANALYSIS_SCHEMA = {
    "type": "object",
    "properties": {
        "description": {"type": "string"},
        "tags": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["description", "tags"],
}


class VisionTimeoutError(TimeoutError):
    """Raised when a vision call exceeds the configured timeout."""
    pass


def resolve_tag_style(tag_style: Optional[str]) -> str:
    """Unknown or missing styles fall back to neutral instead of erroring."""
    if tag_style and tag_style.lower() in TAG_STYLES:
        return tag_style.lower()
    if tag_style:
        logger.info("Unknown tag style %r, using %s", tag_style, DEFAULT_TAG_STYLE)
    return DEFAULT_TAG_STYLE


def build_prompt(tag_style: str) -> str:
    return ANALYSIS_PROMPT.format(instruction=TAG_STYLES[resolve_tag_style(tag_style)]["instruction"])


def normalize_tags(tags: Iterable[Any], limit: int = MAX_TAGS) -> list[str]:
    """Strip tags, drop blank and duplicate entries, keep at most ``limit``."""
    result: list[str] = []
    seen: set[str] = set()
    for tag in tags or []:
        if not isinstance(tag, str):
            continue
        cleaned = tag.strip()
        if not cleaned or cleaned.lower() in seen:
            continue
        seen.add(cleaned.lower())
        result.append(cleaned)
        if len(result) >= limit:
            break
    return result


_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


def parse_analysis_reply(content: Optional[str]) -> Dict[str, Any]:
    """Pull the JSON object out of a model reply (prose and code fences allowed)."""
    if not content:
        raise ValueError("Empty response from vision model")
    match = _JSON_OBJECT.search(content)
    if not match:
        raise ValueError("Could not parse AI response")
    data = json.loads(match.group(0))
    if not isinstance(data, dict):
        raise ValueError("AI response is not a JSON object")
    return data


@dataclass
class AnalysisResult:
    """Outcome of one analysis call."""
    success: bool
    description: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    tag_style: str = DEFAULT_TAG_STYLE
    error: Optional[str] = None

    @classmethod
    def failure(cls, error: str, tag_style: str = DEFAULT_TAG_STYLE) -> "AnalysisResult":
        return cls(success=False, error=error, tag_style=tag_style)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "description": self.description,
            "tags": list(self.tags),
            "tagStyle": self.tag_style,
            "error": self.error,
        }


class BaseVisionProvider(ABC):
    """Abstract base class for async vision-capable LLM providers."""

    # Override in subclasses with provider-specific retryable exception types
    RETRYABLE_EXCEPTIONS: Tuple[Type[BaseException], ...] = (ConnectionError, TimeoutError)

    def __init__(self, api_key: str, model_name: str, temperature: float = 0.4,
                 timeout: float = 90, max_tokens: int = 500):
        self.api_key = api_key
        self.model_name = model_name
        self.temperature = temperature
        self.timeout = timeout
        self.max_tokens = max_tokens

    async def _with_retry(self, sync_fn, *args, max_retries: int = 3):
        """Wrap a sync SDK call with exponential backoff for transient errors."""
        for attempt in range(max_retries + 1):
            try:
                return await asyncio.to_thread(sync_fn, *args)
            except self.RETRYABLE_EXCEPTIONS as e:
                if attempt == max_retries:
                    raise
                delay = (2 ** (attempt + 1)) + random.uniform(0, 1)
                logger.warning(
                    "Vision call failed (attempt %d/%d), retrying in %.1fs: %s",
                    attempt + 1, max_retries + 1, delay, e,
                )
                await asyncio.sleep(delay)

    async def describe_image(self, image_url: str, prompt: str) -> str:
        """Send the image URL and prompt, return the raw text reply."""
        try:
            return await asyncio.wait_for(
                self._with_retry(self._sync_describe_image, image_url, prompt),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            raise VisionTimeoutError(f"Vision call timed out after {self.timeout}s")

    @abstractmethod
    def _sync_describe_image(self, image_url: str, prompt: str) -> str:
        pass


class OpenAIVisionProvider(BaseVisionProvider):
    """OpenAI chat completions with an image_url content part."""

    def __init__(self, api_key: str, model_name: str = "gpt-4o-mini", **kwargs):
        super().__init__(api_key, model_name, **kwargs)
        from openai import OpenAI, RateLimitError, APIConnectionError
        self.client = OpenAI(api_key=api_key)
        self.RETRYABLE_EXCEPTIONS = (
            RateLimitError, APIConnectionError, ConnectionError, TimeoutError,
        )

    def _sync_describe_image(self, image_url, prompt):
        response = self.client.chat.completions.create(
            model=self.model_name,
            messages=[
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {"type": "image_url", "image_url": {"url": image_url}},
                    ],
                }
            ],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        return response.choices[0].message.content


class GeminiVisionProvider(BaseVisionProvider):
    """Gemini via google-genai, image passed as a URI part."""

    def __init__(self, api_key: str, model_name: str = "", **kwargs):
        super().__init__(api_key, model_name, **kwargs)
        from google import genai
        self.client = genai.Client(api_key=api_key)
        try:
            from google.api_core.exceptions import ResourceExhausted, ServiceUnavailable
            self.RETRYABLE_EXCEPTIONS = (
                ResourceExhausted, ServiceUnavailable, ConnectionError, TimeoutError,
            )
        except ImportError:
            pass  # google-api-core is optional; keep the base defaults

    def _sync_describe_image(self, image_url, prompt):
        from google.genai import types

        mime_type, _ = mimetypes.guess_type(urlsplit(image_url).path)
        image_part = types.Part.from_uri(file_uri=image_url, mime_type=mime_type or "image/jpeg")
        config = types.GenerateContentConfig(
            temperature=self.temperature,
            max_output_tokens=self.max_tokens,
            response_mime_type="application/json",
            response_json_schema=ANALYSIS_SCHEMA,
        )
        response = self.client.models.generate_content(
            model=self.model_name, contents=[image_part, prompt], config=config,
        )
        return response.text


def create_vision_provider(
    provider: str, api_key: str = "", model_name: str = "",
    temperature: float = 0.4, timeout: float = 90, max_tokens: int = 500,
) -> BaseVisionProvider:
    """Build a provider. Credentials are resolved by the caller."""
    if not model_name:
        raise ValueError("No vision model configured")
    options = {"temperature": temperature, "timeout": timeout, "max_tokens": max_tokens}
    if provider == "openai":
        return OpenAIVisionProvider(api_key=api_key, model_name=model_name, **options)
    elif provider == "gemini":
        return GeminiVisionProvider(api_key=api_key, model_name=model_name, **options)
    else:
        raise ValueError(f"Unknown LLM provider: {provider}")


class ImageAnalyzer:
    """Turns an image URL and a tag style into a description and tags."""

    def __init__(self, provider: Optional[BaseVisionProvider]):
        self.provider = provider

    async def analyze(self, image_url: str, tag_style: str = DEFAULT_TAG_STYLE) -> AnalysisResult:
        style = resolve_tag_style(tag_style)
        if self.provider is None:
            return AnalysisResult.failure("AI analysis is not configured", tag_style=style)
        if not image_url:
            return AnalysisResult.failure("Invalid image URL", tag_style=style)

        try:
            reply = await self.provider.describe_image(image_url, build_prompt(style))
            data = parse_analysis_reply(reply)
        except Exception as e:
            logger.warning("Image analysis failed for %s: %s", image_url, e)
            return AnalysisResult.failure(safe_error_message(e, "Image analysis failed"), tag_style=style)

        tags = data.get("tags") or []
        if isinstance(tags, str):
            tags = tags.split(",")
        elif not isinstance(tags, list):
            logger.warning("Vision reply for %s has tags of type %s", image_url, type(tags).__name__)
            return AnalysisResult.failure("Could not parse AI response", tag_style=style)

        description = data.get("description")
        if description is not None and not isinstance(description, str):
            description = str(description)
        return AnalysisResult(
            success=True,
            description=(description or "").strip() or None,
            tags=normalize_tags(tags),
            tag_style=style,
        )
