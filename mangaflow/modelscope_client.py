"""
MangaFlow - ModelScope image generation client.

Generates panel images through the ModelScope async task API:
create task -> poll status -> resolve the output locator.

Polling runs every 5 seconds under a hard 5-minute wall-clock budget that
starts at the first poll. Transient failures while polling (transport
errors, 5xx/429 responses, unreadable bodies) are logged and polled through;
they never reset or extend the budget.

generate_panel_image() is the only entry point callers need: every failure
below is logged there and turned into None.
"""

import asyncio
import logging
import mimetypes
import os
import time
import uuid
from pathlib import Path
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

MODELSCOPE_BASE_URL = "https://api-inference.modelscope.cn"
DEFAULT_MODEL = "Qwen/Qwen-Image"

POLL_INTERVAL = 5.0      # Seconds between status checks
MAX_WAIT = 5 * 60.0      # Seconds, measured from the first poll
REQUEST_TIMEOUT = 60.0   # Seconds per HTTP request, clipped to what is left of MAX_WAIT

SUCCESS_STATUSES = ("SUCCEED", "SUCCEEDED")
FAILED_STATUS = "FAILED"

# Locators the caller can use as-is
PASSTHROUGH_SCHEMES = ("http://", "https://", "data:", "blob:", "file:")

PANEL_PROMPT_TEMPLATE = (
    "Manga illustration in the style of {style}. {prompt}. "
    "High quality, professional line art, detailed backgrounds, expressive characters. "
    "Clean black and white manga aesthetics unless specified otherwise."
)


# ============================================================
# Errors
# ============================================================

class ModelScopeError(Exception):
    """Base class for every image generation failure."""


class AuthError(ModelScopeError):
    """The service rejected the API key (HTTP 401)."""


class ApiError(ModelScopeError):
    """Non-2xx response or a body we cannot use."""

    def __init__(self, status_code: int, body: str = ""):
        self.status_code = status_code
        self.body = body
        super().__init__(f"ModelScope API error ({status_code}): {body[:300]}")


class NetworkError(ModelScopeError):
    """Transport-level failure. Retried silently inside the poll loop."""


class EmptyResultError(ModelScopeError):
    """Task succeeded but returned no image."""


class GenerationFailedError(ModelScopeError):
    """The service reported the task as FAILED."""

    def __init__(self, message: str = ""):
        self.service_message = message
        super().__init__(f"Image generation failed: {message or 'no details'}")


class TaskTimeoutError(ModelScopeError, TimeoutError):
    """No terminal status within the polling budget."""


def build_panel_prompt(prompt: str, style: str) -> str:
    return PANEL_PROMPT_TEMPLATE.format(style=style, prompt=prompt.strip().rstrip("."))


def _is_transient(status_code: int) -> bool:
    return status_code >= 500 or status_code == 429


class ModelScopeClient:
    """Async client for ModelScope image generation tasks."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        poll_interval: float = POLL_INTERVAL,
        max_wait: float = MAX_WAIT,
        image_dir: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key or os.environ.get("MODELSCOPE_API_KEY") or os.environ.get("API_KEY", "")
        if not self.api_key:
            logger.warning("MODELSCOPE_API_KEY not set - image generation will fail")
        self.base_url = (base_url or os.environ.get("MODELSCOPE_BASE_URL", MODELSCOPE_BASE_URL)).rstrip("/")
        self.model = model or os.environ.get("MODELSCOPE_MODEL", DEFAULT_MODEL)
        self.poll_interval = poll_interval
        self.max_wait = max_wait
        data_dir = Path(os.environ.get("MANGAFLOW_DATA_DIR", "data"))
        self.image_dir = Path(image_dir) if image_dir else data_dir / "images"
        self._client = http_client

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(REQUEST_TIMEOUT, connect=30.0),
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Task lifecycle
    # ------------------------------------------------------------------

    async def create_task(self, prompt: str, style: str) -> str:
        """Submit a generation task. Returns the task id."""
        client = await self._get_client()
        payload = {
            "model": self.model,
            "prompt": build_panel_prompt(prompt, style),
        }
        headers = {**self._headers(), "X-ModelScope-Async-Mode": "true"}

        try:
            response = await client.post(
                f"{self.base_url}/v1/images/generations",
                headers=headers,
                json=payload,
            )
        except httpx.TransportError as e:
            raise NetworkError(f"Task creation request failed: {e}") from e

        if response.status_code == 401:
            raise AuthError(f"Authentication failed, check MODELSCOPE_API_KEY: {response.text[:200]}")
        if not response.is_success:
            raise ApiError(response.status_code, response.text)

        try:
            task_id = response.json()["task_id"]
        except (ValueError, KeyError, TypeError) as e:
            raise ApiError(response.status_code, f"No task_id in response: {response.text}") from e
        if isinstance(task_id, bool) or not isinstance(task_id, (str, int)):
            raise ApiError(response.status_code, f"Unexpected task_id in response: {response.text}")
        task_id = str(task_id).strip()
        if not task_id:
            raise ApiError(response.status_code, f"Empty task_id in response: {response.text}")
        # Goes into the status URL path
        if not task_id.isprintable() or "/" in task_id:
            raise ApiError(response.status_code, f"Malformed task_id in response: {task_id!r}")

        logger.info(f"ModelScope task created: {task_id}")
        return task_id

    async def poll_task(self, task_id: str) -> str:
        """Poll a task until it succeeds, fails, or the budget runs out."""
        client = await self._get_client()
        status_url = f"{self.base_url}/v1/tasks/{task_id}"
        headers = {**self._headers(), "X-ModelScope-Task-Type": "image_generation"}
        started = time.monotonic()

        logger.info(f"Polling ModelScope task {task_id}")

        while True:
            remaining = self.max_wait - (time.monotonic() - started)
            if remaining <= 0:
                break
            try:
                data = await self._fetch_status(client, status_url, headers, timeout=remaining)
            except NetworkError as e:
                logger.warning(f"Transient poll error for {task_id}: {e}")
                data = None

            if data is not None:
                state = str(data.get("task_status", "")).upper()

                if state in SUCCESS_STATUSES:
                    images = data.get("output_images") or []
                    if isinstance(images, str):
                        images = [images]
                    if not isinstance(images, list) or not images or not images[0]:
                        raise EmptyResultError(f"Task {task_id} succeeded but returned no image")
                    logger.info(f"ModelScope task {task_id} complete "
                                f"({time.monotonic() - started:.0f}s)")
                    return str(images[0])

                if state == FAILED_STATUS:
                    raise GenerationFailedError(
                        data.get("error_message") or data.get("message") or ""
                    )

                logger.info(f"ModelScope status: {state or 'UNKNOWN'} "
                            f"({time.monotonic() - started:.0f}s elapsed)")

            remaining = self.max_wait - (time.monotonic() - started)
            if remaining <= 0:
                break
            await asyncio.sleep(min(self.poll_interval, remaining))

        raise TaskTimeoutError(f"Task {task_id} timed out after {self.max_wait:.0f}s")

    async def _fetch_status(
        self, client: httpx.AsyncClient, url: str, headers: dict, timeout: float
    ) -> dict:
        """One status request. Transient problems come back as NetworkError."""
        try:
            response = await client.get(url, headers=headers, timeout=min(timeout, REQUEST_TIMEOUT))
        except httpx.TransportError as e:
            raise NetworkError(str(e)) from e

        if response.status_code == 401:
            raise AuthError(f"Authentication failed while polling: {response.text[:200]}")
        if _is_transient(response.status_code):
            raise NetworkError(f"HTTP {response.status_code}")
        if not response.is_success:
            raise ApiError(response.status_code, response.text)

        try:
            data = response.json()
        except ValueError as e:
            raise NetworkError(f"Unreadable status body: {response.text[:200]}") from e
        if not isinstance(data, dict):
            raise NetworkError(f"Unexpected status body: {response.text[:200]}")
        return data

    # ------------------------------------------------------------------
    # Locator resolution
    # ------------------------------------------------------------------

    async def resolve_image(self, locator: str) -> str:
        """
        Make a locator usable locally.

        Network and embedded locators pass through untouched. Anything else
        is downloaded into the image cache and returned as a file:// URI.
        Any failure falls back to the original locator.
        """
        if locator.startswith(PASSTHROUGH_SCHEMES):
            return locator

        try:
            client = await self._get_client()
            url = httpx.URL(self.base_url).join(locator)
            response = await client.get(url)
            if not response.is_success:
                raise RuntimeError(f"Image download failed ({response.status_code})")

            content_type = response.headers.get("content-type", "").split(";")[0]
            extension = mimetypes.guess_extension(content_type) or Path(locator).suffix or ".png"
            output_path = self.image_dir / f"{uuid.uuid4()}{extension}"
            output_path.parent.mkdir(parents=True, exist_ok=True)
            with open(output_path, "wb") as f:
                f.write(response.content)

            logger.info(f"Image saved: {output_path} ({len(response.content)} bytes)")
            return output_path.resolve().as_uri()

        except (httpx.HTTPError, httpx.InvalidURL, RuntimeError, OSError) as e:
            logger.warning(f"Could not fetch image {locator}, returning it as-is: {e}")
            return locator

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def generate_panel_image(self, prompt: str, style: str) -> Optional[str]:
        """Create, poll and resolve one image. None on any failure."""
        logger.info(f"Generating panel image: {prompt[:60]}...")
        try:
            task_id = await self.create_task(prompt, style)
            locator = await self.poll_task(task_id)
            image_url = await self.resolve_image(locator)
        except ModelScopeError as e:
            logger.error(f"Panel image generation failed ({type(e).__name__}): {e}")
            return None
        except Exception as e:
            logger.error(f"Panel image generation failed unexpectedly ({type(e).__name__}): {e}")
            return None

        logger.info(f"Panel image ready: {image_url}")
        return image_url
