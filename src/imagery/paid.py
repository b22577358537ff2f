"""Paid text-to-image providers.

Two mutually exclusive shapes, chosen by AIGC_API_TYPE:

- "openai": synchronous. One POST returns the image URL.
- "modelscope": asynchronous task. A create call returns a task_id which is
  polled until it reaches a terminal status. The backend refuses direct
  cross-origin calls, so both calls always go through the configured relay
  (<relay>/generate and <relay>/task/<id>).
"""

import asyncio
import logging
from typing import Callable, Optional

import httpx

from config import Settings
from exceptions import (
    ConfigurationError,
    GenerationFailedError,
    GenerationTimeoutError,
    ProviderError,
)
from .free_providers import augment_prompt
from .models import GenerationTask

logger = logging.getLogger(__name__)

ASYNC_MODE_HEADER = "X-ModelScope-Async-Mode"
TASK_TYPE_HEADER = "X-ModelScope-Task-Type"
TASK_TYPE = "image_generation"

StageCallback = Callable[[str], None]


class SyncPaidProvider:
    """OpenAI-style image generation: request in, image URL out."""

    name = "openai"

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self.settings = settings
        self.http_client = http_client

    async def generate(self, prompt: str, on_stage: Optional[StageCallback] = None) -> str:
        """
        Generate one image.

        Raises:
            ProviderError: Non-2xx response, network failure or malformed body
        """
        try:
            response = await self.http_client.post(
                self.settings.aigc_api_url,
                headers={"Authorization": f"Bearer {self.settings.aigc_api_key}"},
                json={
                    "model": self.settings.aigc_model or "dall-e-3",
                    "prompt": augment_prompt(prompt),
                    "n": 1,
                    "size": "1024x1024",
                },
                timeout=self.settings.paid_request_timeout,
            )
        except httpx.HTTPError as e:
            raise ProviderError(f"Paid image API request failed: {e}") from e

        if response.is_error:
            raise ProviderError(
                f"Paid image API returned HTTP {response.status_code}: {_error_detail(response)}"
            )

        try:
            url = response.json()["data"][0]["url"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ProviderError("Paid image API returned a malformed response") from e
        if not isinstance(url, str) or not url:
            raise ProviderError("Paid image API returned an empty image URL")
        return url


class TaskPaidProvider:
    """ModelScope-style asynchronous generation through a local relay."""

    name = "modelscope"

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self.settings = settings
        self.http_client = http_client

    def _relay(self) -> str:
        relay = self.settings.relay_base_url
        if not relay:
            raise ConfigurationError(
                "ModelScope requires a relay: set BACKEND_PROXY_URL (e.g. '/api/modelscope')"
            )
        return relay

    async def generate(self, prompt: str, on_stage: Optional[StageCallback] = None) -> str:
        """
        Create a task and poll it to completion.

        Args:
            prompt: Raw prompt; the style suffix is appended here
            on_stage: Optional callback told when polling starts

        Raises:
            ConfigurationError: No relay configured
            ProviderError: Create call failed or returned no task_id
            GenerationFailedError: Backend reported FAILED
            GenerationTimeoutError: Poll budget exhausted
        """
        relay = self._relay()
        task_id = await self.create_task(relay, prompt)
        if on_stage is not None:
            on_stage("polling")
        task = await self.poll_task(relay, task_id)
        return task.output_url

    async def create_task(self, relay: str, prompt: str) -> str:
        try:
            response = await self.http_client.post(
                f"{relay}/generate",
                headers={
                    "Authorization": f"Bearer {self.settings.aigc_api_key}",
                    ASYNC_MODE_HEADER: "true",
                },
                json={"prompt": augment_prompt(prompt), "model": self.settings.aigc_model},
                timeout=self.settings.paid_request_timeout,
            )
        except httpx.HTTPError as e:
            raise ProviderError(f"Relay unreachable at {relay}: {e}") from e

        if response.is_error:
            raise ProviderError(
                f"Relay create call failed ({response.status_code}): {_error_detail(response)}"
            )
        try:
            task_id = response.json().get("task_id")
        except (ValueError, AttributeError) as e:
            raise ProviderError("Relay create call returned a malformed response") from e
        if not task_id:
            raise ProviderError("Relay create call returned no task_id")

        logger.info(f"Created generation task {task_id}")
        return str(task_id)

    async def fetch_task(self, relay: str, task_id: str) -> GenerationTask:
        """Poll the task once."""
        try:
            response = await self.http_client.get(
                f"{relay}/task/{task_id}",
                headers={TASK_TYPE_HEADER: TASK_TYPE},
                timeout=self.settings.paid_request_timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as e:
            raise ProviderError(f"Task status query failed: {e}") from e
        except ValueError as e:
            raise ProviderError("Task status query returned invalid JSON") from e
        if not isinstance(payload, dict):
            raise ProviderError("Task status query returned unexpected payload")
        return GenerationTask.from_poll(task_id, payload)

    async def poll_task(self, relay: str, task_id: str) -> GenerationTask:
        """
        Poll until the task is terminal.

        The first poll is immediate; later polls wait poll_interval seconds.
        A transient poll error counts as an attempt and polling continues.
        """
        max_attempts = self.settings.poll_max_attempts
        for attempt in range(max_attempts):
            if attempt > 0:
                await asyncio.sleep(self.settings.poll_interval)

            try:
                task = await self.fetch_task(relay, task_id)
            except ProviderError as e:
                logger.warning(f"Task {task_id} poll {attempt + 1}/{max_attempts} failed: {e}")
                continue

            logger.debug(f"Task {task_id} poll {attempt + 1}/{max_attempts}: {task.status}")
            if task.status == "succeeded":
                logger.info(f"Task {task_id} succeeded: {task.output_url}")
                return task
            if task.status == "failed":
                raise GenerationFailedError(
                    f"Image generation failed: {task.error_message or 'unknown error'}"
                )

        raise GenerationTimeoutError(
            f"Task {task_id} not finished after {max_attempts} polls"
        )


def _error_detail(response: httpx.Response) -> str:
    """Best-effort error message from a failed response."""
    try:
        data = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict):
            error = error.get("message")
        return str(error or data.get("message") or response.reason_phrase)
    return response.reason_phrase


def create_paid_provider(settings: Settings, http_client: httpx.AsyncClient):
    """
    Build the configured paid provider.

    Returns:
        SyncPaidProvider, TaskPaidProvider, or None when no key is configured
    """
    if not settings.paid_configured:
        return None
    if settings.aigc_api_type == "modelscope":
        return TaskPaidProvider(settings, http_client)
    return SyncPaidProvider(settings, http_client)
