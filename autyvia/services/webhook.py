"""Client for the external automation webhook that renders a post."""
import os
import re
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from autyvia.services.errors import WebhookError

logger = logging.getLogger(__name__)

GENERATION_WEBHOOK_URL = os.environ.get("GENERATION_WEBHOOK_URL", "")
GENERATION_WEBHOOK_TIMEOUT = float(os.environ.get("GENERATION_WEBHOOK_TIMEOUT", "120"))


@dataclass
class GenerationResult:
    image_url: str
    caption: str
    hashtags: List[str] = field(default_factory=list)


def _parse_hashtags(raw: Any) -> List[str]:
    if isinstance(raw, str):
        return [tag for tag in re.split(r"[\s,]+", raw) if tag]
    if isinstance(raw, list) and all(isinstance(tag, str) for tag in raw):
        return [tag.strip() for tag in raw if tag.strip()]
    raise WebhookError(f"Unexpected hashtags value: {raw!r}")


def parse_generation_response(body: Any) -> GenerationResult:
    """Validate the webhook reply. Some automations wrap it in a one-item list."""
    if isinstance(body, list) and len(body) == 1:
        body = body[0]
    if not isinstance(body, dict):
        raise WebhookError("Webhook response is not a JSON object")

    image_url = body.get("image_url")
    caption = body.get("caption")
    if not isinstance(image_url, str) or not image_url:
        raise WebhookError("Webhook response has no image_url")
    if not isinstance(caption, str):
        raise WebhookError("Webhook response has no caption")

    return GenerationResult(
        image_url=image_url,
        caption=caption,
        hashtags=_parse_hashtags(body.get("hashtags", [])),
    )


class GenerationWebhook:
    """
    One POST per generation, no retries.

    Any transport error, non-2xx status or malformed body raises WebhookError.
    A custom `transport` can be given (tests use `httpx.MockTransport`).
    """

    def __init__(
        self,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url if url is not None else GENERATION_WEBHOOK_URL
        self.timeout = timeout if timeout is not None else GENERATION_WEBHOOK_TIMEOUT
        self._transport = transport

    async def generate(self, payload: Dict[str, Any]) -> GenerationResult:
        if not self.url:
            raise WebhookError("GENERATION_WEBHOOK_URL is not configured")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.url, json=payload)
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPStatusError as exc:
            raise WebhookError(f"Webhook returned HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise WebhookError(f"Webhook request failed: {exc}") from exc
        except ValueError as exc:
            raise WebhookError("Webhook response is not valid JSON") from exc

        result = parse_generation_response(body)
        logger.info("Webhook generated image %s", result.image_url)
        return result


def get_generation_webhook() -> GenerationWebhook:
    """Dependency to get the generation webhook client."""
    return GenerationWebhook()
