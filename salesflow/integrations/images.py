from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import requests
from openai import OpenAI, OpenAIError

from salesflow.errors import UpstreamFailure

logger = logging.getLogger(__name__)

PROVIDER_TAG = "openai-dalle3"


@dataclass
class GeneratedImage:
    data: bytes
    content_type: str
    provider: str


def build_mockup_prompt(session, prompt: Optional[str] = None, custom_instructions: Optional[str] = None) -> str:
    """Landscape-design prompt for ``session``'s property photo."""
    lines = [
        "You are a professional landscape designer. Create a beautiful, realistic "
        "landscaping design mockup based on the provided property photo.",
        "",
        "Property Details:",
        f"- Client: {session.client_name}",
        f"- Address: {session.client_address or 'Property location not specified'}",
        f"- Project Notes: {session.notes or 'No specific requirements mentioned'}",
        "",
        "Design Instructions:",
        "- Transform this property into a professionally landscaped space",
        "- Focus on enhancing curb appeal and creating an inviting outdoor environment",
        "- Include appropriate plants, flowers, trees, and hardscaping elements",
        "- Consider the existing architecture and surroundings",
        "- Make it look realistic and achievable",
        "- Use plants suitable for the apparent climate and setting",
        "",
    ]
    if custom_instructions:
        lines += [f"Additional Requirements: {custom_instructions}", ""]
    if prompt:
        lines.append(f"Specific Request: {prompt}")
    else:
        lines.append(
            "Create a comprehensive landscape design that maximizes the property's potential."
        )
    lines += [
        "",
        "Style: Photorealistic, professional landscape architecture, high quality, natural lighting",
    ]
    return "\n".join(lines)


class ImageGenerator:
    """Single-image generation through the OpenAI images API.

    Calls take tens of seconds and cannot be cancelled once issued.
    """

    def __init__(self, api_key: str, model: str = "dall-e-3", size: str = "1024x1024",
                 quality: str = "hd", timeout: int = 120) -> None:
        self.api_key = api_key
        self.model = model
        self.size = size
        self.quality = quality
        self.timeout = timeout
        self._client = None

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            if not self.api_key:
                raise UpstreamFailure("image generation", "OPENAI_API_KEY is not configured")
            self._client = OpenAI(api_key=self.api_key, timeout=self.timeout)
        return self._client

    def generate(self, prompt: str) -> GeneratedImage:
        try:
            response = self.client.images.generate(
                model=self.model,
                prompt=prompt,
                size=self.size,
                quality=self.quality,
                n=1,
            )
        except OpenAIError as e:
            raise UpstreamFailure("image generation", str(e)) from e

        url = response.data[0].url if response.data else None
        if not url:
            raise UpstreamFailure("image generation", "provider returned no image")

        try:
            r = requests.get(url, timeout=self.timeout)
            r.raise_for_status()
        except requests.RequestException as e:
            raise UpstreamFailure("image generation", f"could not download image: {e}") from e
        logger.info("generated mockup image (%d bytes)", len(r.content))
        return GeneratedImage(
            data=r.content,
            content_type=r.headers.get("Content-Type", "image/png"),
            provider=PROVIDER_TAG,
        )
