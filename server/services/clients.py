"""Async HTTP clients for the email, content-generation and analysis services.

The engine depends only on the Protocols; the httpx clients are the default
implementations wired by the container.
"""

from typing import Any, Dict, Optional, Protocol

import httpx

from core.logging import get_logger, log_collaborator_call
from services.execution.errors import CollaboratorError

logger = get_logger(__name__)


class EmailSender(Protocol):
    async def send(self, account_id: str, to: str, subject: str, body: str,
                   lead_id: Optional[str] = None) -> str:
        """Send an email and return the provider message id."""
        ...


class ContentGenerator(Protocol):
    async def generate(self, prompt: str, model_id: Optional[str], tone: str, length: str) -> str:
        ...


class EmailAnalyzer(Protocol):
    async def analyze(self, email_id: str) -> Dict[str, Any]:
        """Return ``{sentiment, summary, keyPoints, actionItems}``."""
        ...


class _ServiceClient:
    """Shared request handling: JSON in, JSON out, errors as CollaboratorError."""

    service_name = "service"

    def __init__(self, base_url: str, timeout: float = 30.0,
                 client: Optional[httpx.AsyncClient] = None):
        """Initialize client with base URL and timeout.

        Args:
            base_url: Base URL of the service (e.g., http://127.0.0.1:8025)
            timeout: Request timeout in seconds
            client: Optional preconfigured AsyncClient (shared pool or test transport)
        """
        self._base_url = base_url.rstrip('/')
        self._client = client or httpx.AsyncClient(base_url=self._base_url, timeout=timeout)

    async def _post(self, operation: str, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self._client.post(path, json=payload)
            response.raise_for_status()
            data = response.json() if response.content else {}
        except httpx.HTTPStatusError as e:
            log_collaborator_call(logger, self.service_name, operation, False,
                                  status=e.response.status_code)
            raise CollaboratorError(self.service_name,
                                    f"{operation} failed with status {e.response.status_code}") from e
        except httpx.HTTPError as e:
            log_collaborator_call(logger, self.service_name, operation, False, error=str(e))
            raise CollaboratorError(self.service_name, f"{operation} failed: {e}") from e
        except ValueError as e:
            raise CollaboratorError(self.service_name, f"{operation} returned invalid JSON") from e

        log_collaborator_call(logger, self.service_name, operation, True)
        return data

    async def aclose(self) -> None:
        await self._client.aclose()


class HttpEmailSender(_ServiceClient):
    service_name = "email"

    async def send(self, account_id: str, to: str, subject: str, body: str,
                   lead_id: Optional[str] = None) -> str:
        data = await self._post("send", "/emails/send", {
            "fromAccountId": account_id,
            "to": to,
            "subject": subject,
            "body": body,
            "leadId": lead_id,
        })
        message_id = data.get("messageId") or data.get("id")
        if not message_id:
            raise CollaboratorError(self.service_name, "send returned no message id")
        return str(message_id)


class HttpContentGenerator(_ServiceClient):
    service_name = "ai"

    def __init__(self, base_url: str, timeout: float = 30.0,
                 client: Optional[httpx.AsyncClient] = None,
                 default_model: Optional[str] = None):
        super().__init__(base_url, timeout, client)
        self.default_model = default_model

    async def generate(self, prompt: str, model_id: Optional[str], tone: str, length: str) -> str:
        data = await self._post("generate", "/generate", {
            "prompt": prompt,
            "modelId": model_id or self.default_model,
            "tone": tone,
            "length": length,
        })
        return data.get("content") or ""


class HttpEmailAnalyzer(_ServiceClient):
    service_name = "ai"

    async def analyze(self, email_id: str) -> Dict[str, Any]:
        data = await self._post("analyze", f"/emails/{email_id}/analyze", {})
        return {
            "sentiment": data.get("sentiment"),
            "summary": data.get("summary"),
            "keyPoints": data.get("keyPoints") or [],
            "actionItems": data.get("actionItems") or [],
        }
