"""
YandexGPT API client (Foundation Models completion endpoint)
"""
import asyncio
import time
from typing import Dict, List, Optional

import httpx
from pydantic import BaseModel

from dbms_advisor.core.config import Settings, get_settings
from dbms_advisor.core.logging_config import LoggingConfig
from dbms_advisor.core.metrics import llm_request_duration_seconds, llm_requests_total

logger = LoggingConfig.get_logger(__name__)


class YandexGPTError(Exception):
    """Custom exception for YandexGPT errors"""
    pass


class YandexGPTResponse(BaseModel):
    """Completion result"""
    model: str
    text: str
    status: Optional[str] = None


class YandexGPTClient:
    """
    Client for the YandexGPT completion API

    Authenticates with an API key; the model URI is built from the folder id.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_retries: int = 2,
        retry_delay: float = 1.0,
    ):
        self.settings = settings or get_settings()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    @property
    def configured(self) -> bool:
        return self.settings.advisor_enabled

    @property
    def model_uri(self) -> str:
        return f"gpt://{self.settings.yandex_folder_id}/{self.settings.yandex_gpt_model}"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=float(self.settings.llm_timeout_seconds),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Api-Key {self.settings.yandex_api_key}",
            "x-folder-id": self.settings.yandex_folder_id or "",
        }

    def build_payload(self, prompt: str, system_prompt: Optional[str] = None) -> Dict:
        messages: List[Dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "text": system_prompt})
        messages.append({"role": "user", "text": prompt})
        return {
            "modelUri": self.model_uri,
            "completionOptions": {
                "stream": False,
                "temperature": self.settings.llm_temperature,
                "maxTokens": str(self.settings.llm_max_tokens),
            },
            "messages": messages,
        }

    @staticmethod
    def _extract_text(data: Dict) -> YandexGPTResponse:
        try:
            alternative = data["result"]["alternatives"][0]
            text = alternative["message"]["text"]
        except (KeyError, IndexError, TypeError) as e:
            raise YandexGPTError(f"Unexpected YandexGPT response shape: {e}") from e
        return YandexGPTResponse(
            model=data["result"].get("modelVersion", ""),
            text=text,
            status=alternative.get("status"),
        )

    async def generate(self, prompt: str, system_prompt: Optional[str] = None) -> YandexGPTResponse:
        """
        Request a completion

        Args:
            prompt: User message
            system_prompt: System message establishing the assistant role

        Returns:
            YandexGPTResponse with the first alternative's text

        Raises:
            YandexGPTError on missing credentials, HTTP or transport errors
        """
        if not self.configured:
            raise YandexGPTError("YandexGPT API key or folder id is not configured")

        payload = self.build_payload(prompt, system_prompt)
        model = self.settings.yandex_gpt_model
        logger.info(
            "YandexGPT request",
            extra={
                "model": self.model_uri,
                "temperature": self.settings.llm_temperature,
                "max_tokens": self.settings.llm_max_tokens,
                "prompt_head": prompt[:100],
            }
        )

        client = self._get_client()
        start = time.time()
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries + 1):
            try:
                response = await client.post(
                    self.settings.yandex_gpt_url,
                    json=payload,
                    headers=self._headers(),
                )
                response.raise_for_status()
                result = self._extract_text(response.json())
                llm_requests_total.labels(model=model, status="success").inc()
                llm_request_duration_seconds.labels(model=model).observe(time.time() - start)
                logger.info("YandexGPT response received", extra={"response_head": result.text[:100]})
                return result
            except httpx.HTTPStatusError as e:
                last_error = e
                # Client errors are not retried
                if e.response.status_code < 500:
                    break
            except (httpx.TimeoutException, httpx.TransportError) as e:
                last_error = e
            except (YandexGPTError, ValueError) as e:
                # Body is not JSON or has an unexpected shape
                last_error = e
                break

            if attempt < self.max_retries:
                logger.warning(
                    "YandexGPT request failed, retrying",
                    extra={"attempt": attempt + 1, "error": str(last_error)},
                )
                await asyncio.sleep(self.retry_delay * (attempt + 1))

        llm_requests_total.labels(model=model, status="error").inc()
        if isinstance(last_error, YandexGPTError):
            raise last_error
        raise YandexGPTError(f"Ошибка при обращении к YandexGPT: {last_error}") from last_error
