from __future__ import annotations

from typing import Optional

from salesflow.errors import UpstreamFailure
from salesflow.integrations.http import ApiClient


class ResendMailer:
    """Transactional email through the Resend HTTP API."""

    def __init__(self, api_key: str, sender: str, base_url: str = "https://api.resend.com") -> None:
        self.api_key = api_key
        self.sender = sender
        self.client: Optional[ApiClient] = None
        if api_key:
            self.client = ApiClient(
                "email",
                base_url,
                headers={"Authorization": f"Bearer {api_key}"},
            )

    def send(self, to: str, subject: str, html: str) -> str:
        if self.client is None:
            raise UpstreamFailure("email", "RESEND_API_KEY is not configured")
        data = self.client.post(
            "/emails",
            json={"from": self.sender, "to": [to], "subject": subject, "html": html},
        )
        return data.get("id", "")
