from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import httpx
from loguru import logger


@dataclass
class EmailResult:
    ok: bool
    id: Optional[str] = None
    error: Optional[str] = None


class EmailClient:
    """Transactional email over the provider's REST API.

    Without an API key or sender the message is only logged and reported as
    not sent.
    """

    def __init__(
        self,
        api_url: str,
        api_key: Optional[str],
        sender: Optional[str],
        *,
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout
        self.client = client

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.sender)

    async def send(self, to: str, subject: str, html: str, text: str) -> EmailResult:
        if not self.configured:
            logger.info(f"[email] Not configured; would send '{subject}' to {to}")
            return EmailResult(ok=False, error="email API key or sender not configured")

        payload = {"from": self.sender, "to": [to], "subject": subject, "html": html, "text": text}
        headers = {"Authorization": f"Bearer {self.api_key}"}

        try:
            if self.client is not None:
                resp = await self.client.post(self.api_url, json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.post(self.api_url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            logger.error(f"[email] Sending to {to} failed: {exc!r}")
            return EmailResult(ok=False, error=str(exc) or exc.__class__.__name__)

        if not resp.is_success:
            logger.error(f"[email] Provider answered {resp.status_code} for {to}: {resp.text[:200]}")
            return EmailResult(ok=False, error=f"HTTP {resp.status_code}")

        try:
            message_id = resp.json().get("id")
        except ValueError:
            message_id = None
        return EmailResult(ok=True, id=message_id)
