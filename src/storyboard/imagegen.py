"""
Image generation over the Whisk HTTP API.
"""

import base64
import binascii
import json
import logging
import random
import re
import time
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from .errors import AuthenticationError, GenerationError
from .models import AspectRatio

logger = logging.getLogger("storyboard")

IMAGE_URL = "https://aisandbox-pa.googleapis.com/v1/whisk:generateImage"
IMAGE_MODEL = "IMAGEN_3_5"
WORKFLOW_ID = "209e9d06-c1d8-4498-aadc-66ef5bc67b64"

BASE_HEADERS = {
    "accept": "*/*",
    "content-type": "text/plain;charset=UTF-8",
    "origin": "https://labs.google",
    "referer": "https://labs.google/",
}

ASPECT_RATIO_NAMES = {
    AspectRatio.SQUARE: "IMAGE_ASPECT_RATIO_SQUARE",
    AspectRatio.LANDSCAPE: "IMAGE_ASPECT_RATIO_LANDSCAPE",
    AspectRatio.PORTRAIT: "IMAGE_ASPECT_RATIO_PORTRAIT",
}

AUTH_FAILURE_STATUSES = {401, 403}
_B64_RE = re.compile(r"^[A-Za-z0-9+/=\s]+$")
_MIN_B64_LEN = 200


def build_payload(prompt: str, aspect_ratio: AspectRatio, seed: int) -> dict[str, Any]:
    """Build the request body for one image."""
    return {
        "clientContext": {
            "workflowId": WORKFLOW_ID,
            "tool": "BACKBONE",
            "sessionId": f";{int(time.time() * 1000)}",
        },
        "imageModelSettings": {
            "imageModel": IMAGE_MODEL,
            "aspectRatio": ASPECT_RATIO_NAMES[aspect_ratio],
        },
        "seed": seed,
        "prompt": prompt,
        "mediaCategory": "MEDIA_CATEGORY_BOARD",
    }


def find_base64(obj: Any) -> str | None:
    """Depth-first search for the first long base64 string in a JSON value."""
    if isinstance(obj, str):
        if len(obj) > _MIN_B64_LEN and _B64_RE.match(obj):
            return obj.strip()
    elif isinstance(obj, list):
        for item in obj:
            found = find_base64(item)
            if found:
                return found
    elif isinstance(obj, dict):
        for value in obj.values():
            found = find_base64(value)
            if found:
                return found
    return None


def extract_image(data: Any) -> str | None:
    """Return the encoded image from a generateImage response."""
    try:
        direct = data["imagePanels"][0]["generatedImages"][0]["encodedImage"]
    except (KeyError, IndexError, TypeError):
        direct = None
    if isinstance(direct, str) and direct:
        return direct
    return find_base64(data)


async def generate_image(
    client: httpx.AsyncClient,
    prompt: str,
    aspect_ratio: AspectRatio,
    token: str,
    *,
    url: str = IMAGE_URL,
    seed: int | None = None,
) -> str:
    """Generate one image and return it base64 encoded."""
    if seed is None:
        seed = random.randint(0, 2147483646)
    headers = {**BASE_HEADERS, "Authorization": f"Bearer {token}"}
    body = json.dumps(build_payload(prompt, aspect_ratio, seed))

    try:
        r = await client.post(url, content=body, headers=headers)
    except httpx.HTTPError as e:
        logger.error(f"Image request failed: {e}")
        raise GenerationError(f"Network error while generating image: {e}") from e

    if r.status_code in AUTH_FAILURE_STATUSES:
        raise AuthenticationError("Token is invalid or expired", status=r.status_code)
    if not r.is_success:
        raise GenerationError(f"Image API error {r.status_code}: {r.text[:300]}", status=r.status_code)

    try:
        data = r.json()
    except ValueError as e:
        raise GenerationError("Image API returned invalid JSON", status=r.status_code) from e

    image = extract_image(data)
    if not image:
        raise GenerationError("No image data found in the API response", status=r.status_code)
    try:
        base64.b64decode(image)
    except binascii.Error as e:
        raise GenerationError(f"No image data found in the API response (bad base64: {e})", status=r.status_code) from e
    return image


def make_image_generator(
    client: httpx.AsyncClient, url: str = IMAGE_URL
) -> Callable[[str, AspectRatio, str], Awaitable[str]]:
    """Create an image generation function bound to an HTTP client."""

    async def _generate(prompt: str, aspect_ratio: AspectRatio, token: str) -> str:
        return await generate_image(client, prompt, aspect_ratio, token, url=url)

    return _generate
