import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

import httpx
from pydantic import BaseModel, Field

from fieldcapture.core.exceptions import ExportError
from fieldcapture.core.settings import export_settings
from fieldcapture.resilience.retry import RetryConfig, retry_with_backoff

logger = logging.getLogger(__name__)

SERVICE_NAME = "export-webhook"


class ExportPayload(BaseModel):
    session_id: str = Field(..., description="Saved session the values belong to")
    values: list[str] = Field(
        default_factory=list, description="Values newly accepted by this save"
    )
    exported_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the export was sent (UTC)",
    )


class ExportWebhookClient:
    """Posts newly accepted values to an external webhook."""

    def __init__(
        self,
        url: str,
        username: str | None = None,
        password: str | None = None,
        timeout: float | None = None,
        retry_config: RetryConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url
        self.username = username
        self.password = password
        self.timeout = timeout or export_settings.EXPORT_TIMEOUT_SECONDS
        self.retry_config = retry_config or RetryConfig()
        self._transport = transport

        logger.info(
            f"ExportWebhookClient initialized with URL: {self.url}, timeout: {self.timeout}s"
        )

    async def _post_once(self, client: httpx.AsyncClient, payload: ExportPayload) -> int:
        try:
            response = await client.post(
                self.url,
                content=payload.model_dump_json(),
                headers={
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
            )
        except httpx.TimeoutException as e:
            raise ExportError(SERVICE_NAME, "timeout", details={"detail": str(e)})
        except httpx.TransportError as e:
            raise ExportError(SERVICE_NAME, "unavailable", details={"detail": str(e)})

        if response.status_code >= 500:
            raise ExportError(
                SERVICE_NAME,
                "unavailable",
                details={"http_status": response.status_code, "detail": response.text},
            )
        return response.status_code

    async def send_values(self, session_id: str, values: list[str]) -> int:
        """Send the newly accepted values of a saved session.

        Args:
            session_id: The saved session's id.
            values: Values accepted by the save that triggered the export.

        Returns:
            int: HTTP status code (200, 404, etc.) or 0 if the service could
            not be reached.
        """
        payload = ExportPayload(session_id=session_id, values=list(values))
        auth = (self.username, self.password or "") if self.username else None

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, auth=auth, transport=self._transport
            ) as client:
                logger.info(
                    f"Sending export to {self.url}: {payload.model_dump_json()}",
                    extra={"session_id": session_id, "candidate_count": len(values)},
                )
                status = await retry_with_backoff(
                    self._post_once, self.retry_config, (ExportError,), client, payload
                )
        except ExportError as e:
            status = e.details.get("http_status", 0)
            logger.error(
                f"Export failed: {e.message}",
                extra={
                    "session_id": session_id,
                    "error_code": e.error_code,
                    "http_status": status,
                },
            )
            return status

        if status >= 400:
            logger.error(
                f"Export rejected with status {status}",
                extra={"session_id": session_id, "http_status": status},
            )
        else:
            logger.info(
                f"Export delivered successfully. Status: {status}",
                extra={"session_id": session_id, "http_status": status},
            )
        return status

    def as_listener(self) -> Callable[[str, list[str]], Awaitable[None]]:
        """Adapt to the reconciler's save listener signature.

        The reconciler schedules the returned coroutine, so a slow endpoint
        never holds up ``save()``.
        """

        async def listener(session_id: str, values: list[str]) -> None:
            await self.send_values(session_id, values)

        return listener


def create_export_client_from_settings() -> Optional[ExportWebhookClient]:
    """Factory function to create ExportWebhookClient from centralized settings.

    Returns:
        ExportWebhookClient, or None when EXPORT_WEBHOOK_URL is not set
    """
    if not export_settings.EXPORT_WEBHOOK_URL:
        logger.info("Export webhook not configured; export disabled")
        return None
    password = export_settings.EXPORT_WEBHOOK_PASSWORD
    return ExportWebhookClient(
        url=export_settings.EXPORT_WEBHOOK_URL,
        username=export_settings.EXPORT_WEBHOOK_USERNAME,
        password=password.get_secret_value() if password is not None else None,
        timeout=export_settings.EXPORT_TIMEOUT_SECONDS,
    )
