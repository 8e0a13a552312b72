"""Forwards notification copies to a chat webhook (Slack/Feishu style
incoming webhook that accepts ``{"text": ...}``)."""

from typing import Optional
import logging

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)
import structlog

from procurement.config import settings

logger = structlog.get_logger()
_std_logger = logging.getLogger(__name__)

# Module-level singleton, reuses connections across calls
_http_client: Optional[httpx.AsyncClient] = None


def get_http_client() -> httpx.AsyncClient:
    global _http_client
    if _http_client is None or _http_client.is_closed:
        _http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(10.0, connect=5.0),
        )
    return _http_client


async def close_http_client() -> None:
    global _http_client
    if _http_client is not None and not _http_client.is_closed:
        await _http_client.aclose()
    _http_client = None


class _WebhookConnectError(Exception):
    """The request never reached the webhook, so sending again cannot duplicate it."""


@retry(
    retry=retry_if_exception_type(_WebhookConnectError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=5),
    before_sleep=before_sleep_log(_std_logger, logging.WARNING),
    reraise=True,
)
async def _post_with_retry(url: str, payload: dict) -> httpx.Response:
    client = get_http_client()
    try:
        return await client.post(url, json=payload)
    except (httpx.ConnectError, httpx.ConnectTimeout) as exc:
        logger.warning("chat_webhook_connect_error_retrying", error=str(exc))
        raise _WebhookConnectError(str(exc)) from exc


async def send_chat_message(title: str, content: str, url: Optional[str] = None) -> bool:
    """
    Post a notification copy to the configured chat webhook.

    Only connection failures are retried. Returns True when the webhook
    answered 2xx, False otherwise; never raises.
    """
    url = url or settings.CHAT_WEBHOOK_URL
    if not url:
        return False

    payload = {"text": f"{title}\n{content}"}
    try:
        response = await _post_with_retry(url, payload)
    except Exception as exc:
        logger.error("chat_webhook_failed", error=str(exc), title=title)
        return False

    if 200 <= response.status_code < 300:
        logger.info("chat_webhook_sent", title=title)
        return True

    logger.error(
        "chat_webhook_rejected",
        status_code=response.status_code,
        response=response.text[:500],
        title=title,
    )
    return False
