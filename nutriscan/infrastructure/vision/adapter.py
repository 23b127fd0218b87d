"""
Vision model adapter for photo observations.

Talks to an OpenAI-compatible chat completion endpoint (OpenRouter by
default) with the image inlined as a data URL, then validates the JSON
reply. Two instances form the photo chain: a primary model and a backup
model used when the primary times out or answers garbage.
"""

from __future__ import annotations

import asyncio
import base64
import json
import re
import time
from typing import Any, Dict, List, Optional

import openai
import structlog
from openai import AsyncOpenAI
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from nutriscan.domain.nutrition.models import Macros, ProviderResult
from nutriscan.domain.observation.models import Observation, PhotoObservation
from nutriscan.domain.resolution.models import (
    FailureKind,
    ProviderFailure,
    ProviderOutcome,
)
from nutriscan.domain.shared.errors import MalformedResponseError
from nutriscan.infrastructure.vision.prompts import (
    FOOD_RECOGNITION_SYSTEM_PROMPT,
    FOOD_RECOGNITION_USER_PROMPT,
)

logger = structlog.get_logger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


class VisionReply(BaseModel):
    """Expected JSON reply of the vision model."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    is_food: bool = Field(True, alias="isFood")
    food_name: Optional[str] = Field(None, alias="foodName")
    ingredients: List[str] = Field(default_factory=list)
    weight_grams: Optional[float] = Field(None, alias="weightGrams", ge=0)
    calories: Optional[float] = Field(None, ge=0)
    protein: Optional[float] = Field(None, ge=0)
    carbs: Optional[float] = Field(None, ge=0)
    fat: Optional[float] = Field(None, ge=0)
    fiber: Optional[float] = Field(None, ge=0)
    sugar: Optional[float] = Field(None, ge=0)
    category: Optional[str] = None
    cuisine: Optional[str] = None
    confidence: float = Field(0.5, ge=0.0, le=1.0)


def extract_json(content: str) -> Dict[str, Any]:
    """
    Parse the JSON object out of a model reply.

    Tolerates markdown fences and chatter around the object.

    Raises:
        MalformedResponseError: No JSON object in the reply
    """
    text = _FENCE.sub("", content.strip())
    match = _JSON_OBJECT.search(text)
    if match is None:
        raise MalformedResponseError("Vision reply contains no JSON object")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise MalformedResponseError(f"Vision reply is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedResponseError("Vision reply is not a JSON object")
    return data


class _NoFood(Exception):
    """Model reported that the image shows no food."""


def _mime_type(image: bytes) -> str:
    if image.startswith(b"\x89PNG"):
        return "image/png"
    if image[:4] == b"RIFF" and image[8:12] == b"WEBP":
        return "image/webp"
    return "image/jpeg"


class VisionAdapter:
    """
    Dish recognition through a vision-capable chat model.

    Features:
    - Per-request timeout (the chain decides what to do on timeout)
    - Sliding-window rate limiting (60 RPM default)
    - Tolerant JSON extraction, strict schema validation

    Example:
        >>> primary = VisionAdapter(
        ...     name="vision_primary",
        ...     model="microsoft/phi-3-vision-128k-instruct",
        ...     api_key=os.environ["OPENROUTER_API_KEY"],
        ... )
        >>> outcome = await primary.resolve(PhotoObservation(image_bytes=jpeg))
    """

    def __init__(
        self,
        name: str,
        model: str,
        api_key: Optional[str] = None,
        base_url: str = OPENROUTER_BASE_URL,
        timeout_s: float = 20.0,
        max_tokens: int = 1500,
        temperature: float = 0.3,
        rpm_limit: int = 60,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        """
        Initialize vision adapter.

        Args:
            name: Provider name reported in results
            model: Model identifier on the endpoint
            api_key: Endpoint API key
            base_url: OpenAI-compatible endpoint
            timeout_s: Request timeout in seconds
            max_tokens: Max tokens in the reply
            temperature: Sampling temperature
            rpm_limit: Requests per minute limit
            client: Optional pre-configured AsyncOpenAI client (for testing)

        Raises:
            ValueError: If neither api_key nor client is provided
        """
        if client is None:
            if not api_key:
                raise ValueError(
                    f"API key required for vision provider '{name}'. "
                    "Set OPENROUTER_API_KEY in .env or pass api_key."
                )
            client = AsyncOpenAI(
                api_key=api_key,
                base_url=base_url,
                timeout=timeout_s,
                max_retries=0,
            )
        self._client = client
        self.name = name
        self.model = model
        self.timeout_s = timeout_s
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.rpm_limit = rpm_limit

        self._request_times: List[float] = []
        self._lock = asyncio.Lock()

    async def aclose(self) -> None:
        """Close the underlying client."""
        await self._client.close()

    async def _rate_limit(self) -> None:
        """Keep within rpm_limit, sleeping until the oldest request ages out."""
        async with self._lock:
            now = time.monotonic()
            cutoff = now - 60.0
            self._request_times = [t for t in self._request_times if t > cutoff]

            if len(self._request_times) >= self.rpm_limit:
                wait_time = 60.0 - (now - self._request_times[0])
                if wait_time > 0:
                    await asyncio.sleep(wait_time)
                    now = time.monotonic()
                    cutoff = now - 60.0
                    self._request_times = [
                        t for t in self._request_times if t > cutoff
                    ]

            self._request_times.append(now)

    def _messages(self, photo: PhotoObservation, hint: Optional[str]) -> List[Dict[str, Any]]:
        encoded = base64.b64encode(photo.image_bytes).decode("ascii")
        user_text = FOOD_RECOGNITION_USER_PROMPT
        if hint:
            user_text += f" The user believes this is: {hint}."
        return [
            {"role": "system", "content": FOOD_RECOGNITION_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": user_text},
                    {
                        "type": "image_url",
                        "image_url": {
                            "url": f"data:{_mime_type(photo.image_bytes)};base64,{encoded}"
                        },
                    },
                ],
            },
        ]

    async def _complete(self, photo: PhotoObservation, hint: Optional[str]) -> str:
        await self._rate_limit()
        completion = await self._client.chat.completions.create(
            model=self.model,
            messages=self._messages(photo, hint),
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            timeout=self.timeout_s,
        )
        if not completion.choices:
            raise MalformedResponseError("Vision reply has no choices")
        return completion.choices[0].message.content or ""

    def _failure(
        self, kind: FailureKind, message: str, retry_after_s: Optional[float] = None
    ) -> ProviderFailure:
        return ProviderFailure(
            kind=kind, provider=self.name, message=message, retry_after_s=retry_after_s
        )

    async def resolve(
        self, observation: Observation, *, hint: Optional[str] = None
    ) -> ProviderOutcome:
        """Recognize the dish in a photo; never raises for expected failures."""
        if not isinstance(observation, PhotoObservation):
            return self._failure(FailureKind.NOT_FOUND, "Only photos supported")

        start = time.perf_counter()
        try:
            content = await self._complete(observation, hint)
            reply = VisionReply.model_validate(extract_json(content))
            outcome: ProviderOutcome = self.to_result(reply)
        except openai.APITimeoutError:
            outcome = self._failure(
                FailureKind.TIMEOUT, f"{self.model} timed out after {self.timeout_s}s"
            )
        except openai.RateLimitError as e:
            outcome = self._failure(
                FailureKind.RATE_LIMITED, str(e), retry_after_s=_retry_after(e)
            )
        except openai.APIConnectionError as e:
            outcome = self._failure(FailureKind.TIMEOUT, f"Unreachable: {e}")
        except openai.APIStatusError as e:
            outcome = self._failure(
                FailureKind.MALFORMED_RESPONSE, f"HTTP {e.status_code}: {e.message}"
            )
        except (MalformedResponseError, ValidationError) as e:
            outcome = self._failure(FailureKind.MALFORMED_RESPONSE, str(e))
        except _NoFood as e:
            outcome = self._failure(FailureKind.NOT_FOUND, str(e))

        logger.info(
            "Vision recognition finished",
            provider=self.name,
            model=self.model,
            image_hash=observation.image_hash[:12],
            outcome=getattr(outcome, "kind", "success"),
            elapsed_ms=round((time.perf_counter() - start) * 1000, 1),
        )
        return outcome

    def to_result(self, reply: VisionReply) -> ProviderResult:
        """Map a validated reply to a ProviderResult."""
        if not reply.is_food:
            raise _NoFood("No food detected in image")
        if not reply.food_name or not reply.food_name.strip():
            raise MalformedResponseError("Vision reply has no foodName")
        if reply.calories is None:
            raise MalformedResponseError("Vision reply has no calories")

        return ProviderResult(
            name=reply.food_name,
            category=reply.cuisine or reply.category,
            portion_g=reply.weight_grams,
            macros=Macros(
                calories=reply.calories,
                protein=reply.protein,
                carbs=reply.carbs,
                fat=reply.fat,
                fiber=reply.fiber,
                sugar=reply.sugar,
            ),
            ingredients=[i.strip() for i in reply.ingredients if i and i.strip()],
            confidence=reply.confidence,
            provider=self.name,
        )


def _retry_after(error: openai.RateLimitError) -> Optional[float]:
    value = error.response.headers.get("retry-after") if error.response else None
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None
