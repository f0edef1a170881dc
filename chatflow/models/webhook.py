"""
WhatsApp Cloud API webhook payload parser

Webhooks are sent in this format:
{
  "object": "whatsapp_business_account",
  "entry": [{
    "id": "WABA_ID",
    "changes": [{
      "field": "messages",
      "value": {
        "messaging_product": "whatsapp",
        "metadata": {"display_phone_number": "...", "phone_number_id": "..."},
        "contacts": [{"profile": {"name": "Sam"}, "wa_id": "5511999999999"}],
        "messages": [{
          "from": "5511999999999",
          "id": "wamid.XXX",
          "timestamp": "1672531200",
          "type": "text",
          "text": {"body": "Hello"}
        }]
      }
    }]
  }]
}

Delivery status updates arrive with "statuses" instead of "messages".
"""
from typing import Optional, Any, Dict, List
from pydantic import BaseModel, Field


WHATSAPP_OBJECT = "whatsapp_business_account"


class InboundContent(BaseModel):
    """Normalized content of an inbound message"""
    type: str = "text"
    text: Optional[str] = None
    button_id: Optional[str] = None
    list_row_id: Optional[str] = None

    def to_scope(self) -> Dict[str, Any]:
        return self.model_dump()


class ContactMeta(BaseModel):
    """Sender profile sent alongside the message"""
    name: Optional[str] = None
    wa_id: Optional[str] = None


class InboundMessage(BaseModel):
    """One inbound chat message, transport-independent"""
    message_id: str
    sender_id: str
    content: InboundContent
    contact: ContactMeta = Field(default_factory=ContactMeta)
    timestamp: Optional[str] = None


def extract_message_content(message: Dict[str, Any]) -> InboundContent:
    """
    Extract normalized content from a Cloud API message object.

    Interactive replies carry both the selected id and its visible title;
    media messages fall back to a bracketed placeholder when uncaptioned.
    """
    message_type = message.get("type") or "unknown"
    content = InboundContent(type=message_type)

    if message_type == "text":
        content.text = (message.get("text") or {}).get("body")

    elif message_type == "interactive":
        interactive = message.get("interactive") or {}
        if interactive.get("type") == "button_reply":
            reply = interactive.get("button_reply") or {}
            content.button_id = reply.get("id")
            content.text = reply.get("title")
        elif interactive.get("type") == "list_reply":
            reply = interactive.get("list_reply") or {}
            content.list_row_id = reply.get("id")
            content.text = reply.get("title")

    elif message_type == "button":
        # Quick-reply buttons on template messages
        button = message.get("button") or {}
        content.button_id = button.get("payload")
        content.text = button.get("text")

    elif message_type == "image":
        content.text = (message.get("image") or {}).get("caption") or "[Image]"

    elif message_type == "document":
        content.text = (message.get("document") or {}).get("caption") or "[Document]"

    elif message_type == "audio":
        content.text = "[Audio]"

    elif message_type == "video":
        content.text = (message.get("video") or {}).get("caption") or "[Video]"

    elif message_type == "location":
        location = message.get("location") or {}
        content.text = f"[Location: {location.get('latitude')}, {location.get('longitude')}]"

    else:
        content.text = f"[{message_type}]"

    return content


class WebhookPayload(BaseModel):
    """Raw Cloud API webhook body"""

    model_config = {"extra": "allow"}

    object: Optional[str] = None
    entry: List[Dict[str, Any]] = Field(default_factory=list)

    @property
    def is_whatsapp(self) -> bool:
        return self.object == WHATSAPP_OBJECT

    @property
    def value(self) -> Dict[str, Any]:
        """First change value of the first entry"""
        if not self.entry:
            return {}
        changes = self.entry[0].get("changes") or []
        if not changes:
            return {}
        return changes[0].get("value") or {}

    @property
    def is_message_event(self) -> bool:
        return bool(self.value.get("messages"))

    @property
    def is_status_event(self) -> bool:
        return bool(self.value.get("statuses"))

    @property
    def phone_number_id(self) -> Optional[str]:
        return (self.value.get("metadata") or {}).get("phone_number_id")

    def to_inbound(self) -> Optional[InboundMessage]:
        """Build the normalized inbound message, or None for non-message events"""
        messages = self.value.get("messages") or []
        if not messages:
            return None

        message = messages[0]
        contacts = self.value.get("contacts") or []
        contact = contacts[0] if contacts else {}

        return InboundMessage(
            message_id=message["id"],
            sender_id=message["from"],
            content=extract_message_content(message),
            contact=ContactMeta(
                name=(contact.get("profile") or {}).get("name"),
                wa_id=contact.get("wa_id")
            ),
            timestamp=message.get("timestamp")
        )


def parse_webhook(payload: Dict[str, Any]) -> WebhookPayload:
    """Parse a webhook body into WebhookPayload"""
    return WebhookPayload(**payload)
