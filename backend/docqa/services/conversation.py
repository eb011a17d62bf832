from docqa.services.repository import Repository, StoredMessage


class ConversationStore:
    """Append-only message log, one conversation per session."""

    ROLES = ("user", "assistant")

    def __init__(self, repository: Repository):
        self.repository = repository

    async def append(self, session_id: str, role: str, content: str) -> StoredMessage:
        if role not in self.ROLES:
            raise ValueError(f"Unknown message role: {role}")
        return await self.repository.add_message(session_id, role, content)

    async def recent(self, session_id: str, limit: int) -> list[StoredMessage]:
        """Last ``limit`` messages, oldest first."""
        return await self.repository.recent_messages(session_id, limit)
