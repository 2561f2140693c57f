import asyncio
import base64
from typing import Any, Dict, List, Optional, Sequence

import httpx

from app.core.exceptions import APIClientError, APITimeoutError
from app.models.classification import PageImage
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)

RETRYABLE_STATUS_CODES = frozenset({408, 409, 425, 429, 500, 502, 503, 504})
MAX_RETRY_AFTER_SECONDS = 60.0


class BaseLLMClient:
    """JSON-over-HTTP client with bounded retries for model providers.

    Rate limits, server errors, timeouts and connection failures are retried
    with exponential backoff (or the server's ``Retry-After``); other client
    errors fail immediately.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout: int = 60,
        max_retries: int = 3,
        retry_delay: float = 2.0,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.logger = LOGGER

    async def call_api(
        self,
        payload: Dict[str, Any],
        endpoint: str = "",
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """POST ``payload`` and return the decoded JSON reply.

        Raises:
            APITimeoutError: If every attempt timed out
            APIClientError: On a non-retryable status, an undecodable body,
                or when retries are exhausted
        """
        url = f"{self.base_url}{endpoint}"
        request_headers = {"Authorization": f"Bearer {self.api_key}", **(headers or {})}

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            for attempt in range(1, self.max_retries + 1):
                last_attempt = attempt == self.max_retries
                try:
                    response = await client.post(url, headers=request_headers, json=payload)
                except httpx.TimeoutException as e:
                    self.logger.warning(f"LLM call timed out (attempt {attempt}/{self.max_retries})", extra={"url": url})
                    if last_attempt:
                        raise APITimeoutError(f"LLM call timed out after {attempt} attempts", e) from e
                    await asyncio.sleep(self._backoff(attempt))
                    continue
                except httpx.TransportError as e:
                    self.logger.warning(
                        f"LLM transport error (attempt {attempt}/{self.max_retries}): {e}", extra={"url": url}
                    )
                    if last_attempt:
                        raise APIClientError(f"LLM call failed: {e}", e) from e
                    await asyncio.sleep(self._backoff(attempt))
                    continue

                if response.is_success:
                    try:
                        return response.json()
                    except ValueError as e:
                        raise APIClientError(f"LLM returned a non-JSON body: {response.text[:200]}", e) from e

                self.logger.warning(
                    f"LLM call returned {response.status_code} (attempt {attempt}/{self.max_retries})",
                    extra={"url": url, "error_body": response.text[:500]},
                )
                if response.status_code not in RETRYABLE_STATUS_CODES or last_attempt:
                    raise APIClientError(f"LLM API returned {response.status_code}: {response.text[:500]}")
                await asyncio.sleep(self._retry_after(response) or self._backoff(attempt))

        raise APIClientError(f"LLM call to {url} failed")

    def _backoff(self, attempt: int) -> float:
        return self.retry_delay * (2 ** (attempt - 1))

    @staticmethod
    def _retry_after(response: httpx.Response) -> Optional[float]:
        raw = response.headers.get("Retry-After")
        if raw is None:
            return None
        try:
            return min(max(float(raw), 0.0), MAX_RETRY_AFTER_SECONDS)
        except ValueError:
            return None


class VisionLLMClient:
    """OpenRouter chat-completions client that sends page images alongside a prompt."""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = "https://openrouter.ai/api/v1/chat/completions",
        timeout: int = 120,
        max_retries: int = 3,
    ):
        self.model = model
        self.client = BaseLLMClient(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=max_retries,
        )
        LOGGER.info(f"Initialized vision client with model {self.model}")

    @staticmethod
    def _image_part(image: PageImage) -> Dict[str, Any]:
        encoded = base64.b64encode(image.data).decode("ascii")
        return {
            "type": "image_url",
            "image_url": {"url": f"data:{image.media_type};base64,{encoded}"},
        }

    async def generate_from_images(
        self,
        prompt: str,
        images: Sequence[PageImage],
        system_instruction: Optional[str] = None,
        temperature: float = 0.0,
    ) -> str:
        """Send a prompt plus images and return the model's text reply.

        Raises:
            APIClientError: If the request fails or the response has no choices
        """
        messages: List[Dict[str, Any]] = []
        if system_instruction:
            messages.append({"role": "system", "content": system_instruction})

        content: List[Dict[str, Any]] = [{"type": "text", "text": prompt}]
        content.extend(self._image_part(image) for image in images)
        messages.append({"role": "user", "content": content})

        response = await self.client.call_api(
            payload={"model": self.model, "messages": messages, "temperature": temperature}
        )

        choices = response.get("choices") or []
        if not choices:
            LOGGER.error(f"Unexpected OpenRouter response format: {str(response)[:300]}")
            raise APIClientError("Invalid response format from OpenRouter")

        text = choices[0].get("message", {}).get("content") or ""
        if not text:
            LOGGER.warning("Empty response from OpenRouter")
        return text
