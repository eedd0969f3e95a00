# storefront/clients/mailer.py
import asyncio
import logging
from typing import Any, Dict, Optional
import aiohttp
from ..config import Config
from ..errors import ExternalServiceError

class Mailer:
    """Hands templated mail to an external dispatch API.

    Template rendering happens on the dispatch side. Without ``MAIL_API_URL``
    messages are logged and skipped (development mode).
    """

    service = "mail"

    def __init__(self, api_url: Optional[str] = None, api_key: Optional[str] = None,
                 sender: Optional[str] = None, timeout: Optional[float] = None):
        self.api_url = api_url if api_url is not None else Config.MAIL_API_URL
        self.api_key = api_key if api_key is not None else Config.MAIL_API_KEY
        self.sender = sender or Config.MAIL_FROM
        self.timeout = aiohttp.ClientTimeout(total=timeout or Config.EXTERNAL_TIMEOUT_SECONDS)
        self.logger = logging.getLogger(__name__)

    @property
    def is_configured(self) -> bool:
        return bool(self.api_url)

    async def send(self, to: str, subject: str, template: str,
                   context: Dict[str, Any]) -> Dict[str, Any]:
        if not self.is_configured:
            self.logger.warning(
                f"[DEV MODE] Email sending skipped - would send '{template}' to {to}: {subject}"
            )
            return {"message_id": "dev-mode-skip", "accepted": [to]}

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(self.api_url, json={
                    "from": self.sender,
                    "to": to,
                    "subject": subject,
                    "template": template,
                    "context": context,
                }, headers=headers) as response:
                    if response.status >= 400:
                        raise ExternalServiceError(self.service, f"HTTP {response.status}")
                    data = await response.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise ExternalServiceError(self.service, "request timed out") from e
        except aiohttp.ClientError as e:
            raise ExternalServiceError(self.service, str(e)) from e

        self.logger.info(f"Email sent to {to} - {subject}")
        return data or {}
