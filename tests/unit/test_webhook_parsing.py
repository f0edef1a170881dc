"""
Unit tests for WhatsApp webhook payload parsing.
"""
from chatflow.models import extract_message_content, parse_webhook


def payload(message=None, statuses=None, contact_name="Sam"):
    value = {
        "messaging_product": "whatsapp",
        "metadata": {"display_phone_number": "15550000", "phone_number_id": "1098765"},
    }
    if message is not None:
        value["messages"] = [message]
        value["contacts"] = [{"profile": {"name": contact_name}, "wa_id": message["from"]}]
    if statuses is not None:
        value["statuses"] = statuses
    return {
        "object": "whatsapp_business_account",
        "entry": [{"id": "WABA", "changes": [{"field": "messages", "value": value}]}],
    }


class TestWebhookPayload:
    """Tests for payload classification."""

    def test_text_message(self):
        """A text message is normalized into an InboundMessage."""
        webhook = parse_webhook(payload({
            "from": "5511999990000", "id": "wamid.1", "timestamp": "1",
            "type": "text", "text": {"body": "Hello"}
        }))
        inbound = webhook.to_inbound()

        assert webhook.is_whatsapp
        assert webhook.is_message_event
        assert webhook.phone_number_id == "1098765"
        assert inbound.message_id == "wamid.1"
        assert inbound.sender_id == "5511999990000"
        assert inbound.content.text == "Hello"
        assert inbound.contact.name == "Sam"

    def test_status_update(self):
        """Status-only payloads carry no inbound message."""
        webhook = parse_webhook(payload(statuses=[{"id": "wamid.1", "status": "delivered"}]))
        assert webhook.is_status_event
        assert webhook.to_inbound() is None

    def test_not_whatsapp(self):
        """Other webhook objects are recognized."""
        webhook = parse_webhook({"object": "page", "entry": []})
        assert not webhook.is_whatsapp
        assert webhook.to_inbound() is None


class TestMessageContent:
    """Tests for content extraction per message type."""

    def test_button_reply(self):
        """Button replies carry id and title."""
        content = extract_message_content({
            "type": "interactive",
            "interactive": {"type": "button_reply", "button_reply": {"id": "yes", "title": "Yes"}}
        })
        assert content.button_id == "yes"
        assert content.text == "Yes"

    def test_list_reply(self):
        """List replies carry row id and title."""
        content = extract_message_content({
            "type": "interactive",
            "interactive": {"type": "list_reply", "list_reply": {"id": "row-2", "title": "Pizza"}}
        })
        assert content.list_row_id == "row-2"
        assert content.text == "Pizza"

    def test_media_placeholders(self):
        """Uncaptioned media falls back to a placeholder."""
        assert extract_message_content({"type": "image", "image": {}}).text == "[Image]"
        assert extract_message_content({"type": "image", "image": {"caption": "receipt"}}).text == "receipt"
        assert extract_message_content({"type": "audio", "audio": {}}).text == "[Audio]"

    def test_location(self):
        """Locations render their coordinates."""
        content = extract_message_content({"type": "location", "location": {"latitude": 1.5, "longitude": -2}})
        assert content.text == "[Location: 1.5, -2]"

    def test_unknown_type(self):
        """Unknown types render as [type]."""
        assert extract_message_content({"type": "sticker"}).text == "[sticker]"
