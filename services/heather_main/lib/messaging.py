# services/heather_main/lib/messaging.py
"""
Messaging Manager for HEATHER - patient/doctor conversations stored in Supabase
"""
from typing import Any, Callable, Dict, List, Optional
import logging

from heather_main.lib.errors import PersistenceError

logger = logging.getLogger(__name__)


class MessagingService:
    """Conversations and messages between a patient and a doctor"""

    def __init__(self, client):
        self.client = client

    async def fetch_conversations(self, user_id: str) -> List[Dict[str, Any]]:
        """Conversations the user takes part in, most recently updated first"""
        try:
            response = await (
                self.client.table("conversations")
                .select("*")
                .or_(f"patient_id.eq.{user_id},doctor_id.eq.{user_id}")
                .order("updated_at", desc=True)
                .execute()
            )
            return response.data or []
        except Exception as e:
            logger.error(f"Error fetching conversations: {e}")
            return []

    async def fetch_messages(self, conversation_id: str) -> List[Dict[str, Any]]:
        """Messages of one conversation, oldest first"""
        try:
            response = await (
                self.client.table("messages")
                .select("*")
                .eq("conversation_id", conversation_id)
                .order("created_at")
                .execute()
            )
            return response.data or []
        except Exception as e:
            logger.error(f"Error fetching messages: {e}")
            return []

    async def send_message(self, conversation_id: str, sender_id: str, content: str) -> Dict[str, Any]:
        try:
            response = await (
                self.client.table("messages")
                .insert({
                    "conversation_id": conversation_id,
                    "sender_id": sender_id,
                    "content": content,
                    "message_type": "text",
                })
                .execute()
            )
        except Exception as e:
            logger.error(f"Error sending message: {e}")
            raise PersistenceError(f"Failed to send message: {e}") from e

        return response.data[0] if response.data else {}

    async def create_conversation(self, patient_id: str, doctor_id: str) -> Dict[str, Any]:
        try:
            response = await (
                self.client.table("conversations")
                .insert({"patient_id": patient_id, "doctor_id": doctor_id})
                .execute()
            )
        except Exception as e:
            logger.error(f"Error creating conversation: {e}")
            raise PersistenceError(f"Failed to create conversation: {e}") from e

        if not response.data:
            raise PersistenceError("Conversation insert returned no row")
        logger.info(f"Created conversation {response.data[0].get('id')}")
        return response.data[0]

    # --- REALTIME ---
    async def subscribe_to_messages(
        self, conversation_id: str, on_message: Callable[[Dict[str, Any]], None]
    ):
        """Deliver every message inserted into the conversation; returns the channel."""

        def handle_insert(payload):
            message = inserted_row(payload)
            if message is not None:
                on_message(message)

        channel = self.client.channel(f"messages:{conversation_id}")
        channel.on_postgres_changes(
            event="INSERT",
            schema="public",
            table="messages",
            filter=f"conversation_id=eq.{conversation_id}",
            callback=handle_insert,
        )
        await channel.subscribe()
        logger.info(f"Subscribed to new messages in {conversation_id}")
        return channel

    async def unsubscribe(self, channel) -> None:
        try:
            await self.client.remove_channel(channel)
        except Exception as e:
            logger.warning(f"Failed to remove realtime channel: {e}")


def inserted_row(payload: Any) -> Optional[Dict[str, Any]]:
    """Pull the new row out of a postgres_changes payload."""
    if not isinstance(payload, dict):
        return None
    data = payload.get("data")
    if isinstance(data, dict) and isinstance(data.get("record"), dict):
        return data["record"]
    for key in ("record", "new"):
        if isinstance(payload.get(key), dict):
            return payload[key]
    return None
