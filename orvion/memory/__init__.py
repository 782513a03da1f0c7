"""
Orvion Memory Subsystem

RAM-only conversation log per user, used as reasoning-service context.
"""
from orvion.memory.conversation_store import ConversationStore, Message, extract_entities, format_context

__all__ = ["ConversationStore", "Message", "extract_entities", "format_context"]
