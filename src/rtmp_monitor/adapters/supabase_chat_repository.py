"""Supabase-backed chat roster."""

from dataclasses import dataclass

from supabase import Client

from rtmp_monitor.services.subscriptions import ChatRepository


@dataclass
class SupabaseChatRepository(ChatRepository):
    """Supabase implementation for the notification_chats table."""

    client: Client

    def list_chat_ids(self) -> list[int]:
        """Return every subscribed chat id."""
        response = self.client.table("notification_chats").select("chat_id").execute()
        return [int(row["chat_id"]) for row in response.data or []]

    def add_chat(self, chat_id: int) -> bool:
        """Insert the chat unless it is already present."""
        existing = (
            self.client.table("notification_chats")
            .select("chat_id")
            .eq("chat_id", chat_id)
            .limit(1)
            .execute()
        )
        if existing.data:
            return False
        self.client.table("notification_chats").insert({"chat_id": chat_id}).execute()
        return True

    def remove_chat(self, chat_id: int) -> bool:
        """Delete the chat row."""
        response = (
            self.client.table("notification_chats")
            .delete()
            .eq("chat_id", chat_id)
            .execute()
        )
        return bool(response.data)
