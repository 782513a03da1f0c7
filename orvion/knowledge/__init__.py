"""Offline fact lookup used when the reasoning service is unreachable."""

from orvion.knowledge.offline_knowledge import KnowledgeEntry, OfflineKnowledge

__all__ = ["KnowledgeEntry", "OfflineKnowledge"]
