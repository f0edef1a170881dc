"""
WhatsApp service - Cloud API integration
"""
import logging
from typing import Optional, Any, Dict, List
import httpx

from ..core.config import settings
from ..models.channel import ChannelConfig

logger = logging.getLogger(__name__)

# Interactive message limits enforced by the Cloud API
MAX_BUTTONS = 3
MAX_BUTTON_TITLE = 20
MAX_LIST_ROWS = 10
MAX_LIST_BUTTON_TEXT = 20
MAX_ROW_TITLE = 24
MAX_ROW_DESCRIPTION = 72
MAX_SECTION_TITLE = 24


class WhatsAppCloudService:
    """Service for sending messages through the WhatsApp Cloud API"""

    def __init__(
        self,
        phone_number_id: str,
        access_token: str,
        base_url: Optional[str] = None,
        api_version: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.phone_number_id = phone_number_id
        self.access_token = access_token
        self.base_url = (base_url or settings.WHATSAPP_API_BASE).rstrip("/")
        self.api_version = api_version or settings.WHATSAPP_API_VERSION
        self.timeout = timeout or settings.WHATSAPP_TIMEOUT_SECONDS
        self._client = client

    @property
    def messages_url(self) -> str:
        return f"{self.base_url}/{self.api_version}/{self.phone_number_id}/messages"

    def _get_headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.access_token}"
        }

    async def _post(self, payload: Dict[str, Any], action: str) -> Dict[str, Any]:
        """POST to the messages endpoint and normalize the result"""
        if not self.access_token:
            return {"success": False, "error": "Access token not configured"}

        try:
            if self._client is not None:
                response = await self._client.post(
                    self.messages_url,
                    json=payload,
                    headers=self._get_headers(),
                    timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(
                        self.messages_url,
                        json=payload,
                        headers=self._get_headers(),
                        timeout=self.timeout
                    )
        except httpx.HTTPError as e:
            logger.error(f"Error on WhatsApp {action}: {e}")
            return {"success": False, "error": str(e)}

        if response.status_code >= 400:
            logger.error(f"WhatsApp {action} error: {response.status_code} - {response.text}")
            return {
                "success": False,
                "error": f"HTTP {response.status_code}: {response.text}"
            }

        try:
            data = response.json()
        except ValueError:
            data = {}

        messages = data.get("messages") or [{}]
        return {
            "success": True,
            "message_id": messages[0].get("id"),
            "data": data
        }

    def _message(self, to: str, message_type: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": message_type,
            message_type: body
        }

    # ==========================================
    # OUTBOUND MESSAGES
    # ==========================================

    async def send_text(self, to: str, message: str, preview_url: bool = False) -> Dict[str, Any]:
        """
        Send a text message.

        Args:
            to: Recipient wa_id
            message: Message text
            preview_url: Render link previews

        Returns:
            {"success": bool, "message_id"?: str, "error"?: str}
        """
        payload = self._message(to, "text", {"body": message, "preview_url": preview_url})
        return await self._post(payload, "send_text")

    async def send_image(self, to: str, image_url: str, caption: Optional[str] = None) -> Dict[str, Any]:
        """Send an image by public link"""
        image: Dict[str, Any] = {"link": image_url}
        if caption:
            image["caption"] = caption
        return await self._post(self._message(to, "image", image), "send_image")

    async def send_buttons(
        self,
        to: str,
        body_text: str,
        buttons: List[Dict[str, str]],
        header_text: Optional[str] = None,
        footer_text: Optional[str] = None
    ) -> Dict[str, Any]:
        """Send an interactive reply-button message"""
        interactive: Dict[str, Any] = {
            "type": "button",
            "body": {"text": body_text},
            "action": {
                "buttons": [
                    {
                        "type": "reply",
                        "reply": {"id": b["id"], "title": b["title"][:MAX_BUTTON_TITLE]}
                    }
                    for b in buttons
                ]
            }
        }
        if header_text:
            interactive["header"] = {"type": "text", "text": header_text}
        if footer_text:
            interactive["footer"] = {"text": footer_text}

        return await self._post(self._message(to, "interactive", interactive), "send_buttons")

    async def send_list(
        self,
        to: str,
        body_text: str,
        button_text: str,
        sections: List[Dict[str, Any]],
        header_text: Optional[str] = None,
        footer_text: Optional[str] = None
    ) -> Dict[str, Any]:
        """Send an interactive list message"""
        formatted_sections = []
        for section in sections:
            formatted = {"rows": section.get("rows") or []}
            if section.get("title"):
                formatted["title"] = section["title"][:MAX_SECTION_TITLE]
            formatted_sections.append(formatted)

        interactive: Dict[str, Any] = {
            "type": "list",
            "body": {"text": body_text},
            "action": {
                "button": button_text[:MAX_LIST_BUTTON_TEXT],
                "sections": formatted_sections
            }
        }
        if header_text:
            interactive["header"] = {"type": "text", "text": header_text}
        if footer_text:
            interactive["footer"] = {"text": footer_text}

        return await self._post(self._message(to, "interactive", interactive), "send_list")

    async def mark_as_read(self, message_id: str) -> Dict[str, Any]:
        """Mark an inbound message as read"""
        payload = {
            "messaging_product": "whatsapp",
            "status": "read",
            "message_id": message_id
        }
        return await self._post(payload, "mark_as_read")


# Factory function
def create_whatsapp_service(
    channel: ChannelConfig,
    client: Optional[httpx.AsyncClient] = None
) -> WhatsAppCloudService:
    """Create a WhatsApp service bound to one channel's credentials"""
    return WhatsAppCloudService(
        phone_number_id=channel.phone_number_id,
        access_token=channel.access_token,
        client=client
    )
