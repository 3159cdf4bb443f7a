from lumai.storage.conversation_store import (
    BaseConversationStore,
    InMemoryConversationStore,
    SQLiteConversationStore,
    make_store,
)

__all__ = [
    "BaseConversationStore",
    "InMemoryConversationStore",
    "SQLiteConversationStore",
    "make_store",
]
