"""
Small built-in fact table for offline answers.

An entry matches when every one of its keywords occurs in the query
(strict matching avoids "capital of india" answering for "capital of france").
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

KNOWLEDGE_CONFIDENCE = 0.95


@dataclass(frozen=True)
class KnowledgeEntry:
    keywords: Tuple[str, ...]
    answer: str


COMMON_KNOWLEDGE: List[KnowledgeEntry] = [
    # Geography
    KnowledgeEntry(("capital", "france"), "The capital of France is Paris."),
    KnowledgeEntry(("capital", "india"), "The capital of India is New Delhi."),
    KnowledgeEntry(("capital", "japan"), "The capital of Japan is Tokyo."),
    KnowledgeEntry(("capital", "germany"), "The capital of Germany is Berlin."),
    KnowledgeEntry(("capital", "italy"), "The capital of Italy is Rome."),
    KnowledgeEntry(("capital", "australia"), "The capital of Australia is Canberra."),
    KnowledgeEntry(("capital", "canada"), "The capital of Canada is Ottawa."),
    KnowledgeEntry(("capital", "maharashtra"), "The capital of Maharashtra is Mumbai."),
    KnowledgeEntry(("capital", "karnataka"), "The capital of Karnataka is Bengaluru."),
    # Space
    KnowledgeEntry(("largest planet",), "Jupiter is the largest planet in our solar system."),
    KnowledgeEntry(("red planet",), "Mars is known as the Red Planet."),
    KnowledgeEntry(("hottest planet",), "Venus is the hottest planet in our solar system."),
    KnowledgeEntry(("how many planets",), "There are 8 planets in our solar system."),
    KnowledgeEntry(("speed of light",), "The speed of light is approximately 299,792,458 meters per second."),
    # Science
    KnowledgeEntry(("powerhouse", "cell"), "The mitochondria is the powerhouse of the cell."),
    KnowledgeEntry(("chemical symbol", "gold"), "The chemical symbol for gold is Au."),
    KnowledgeEntry(("boiling point", "water"), "Water boils at 100 degrees Celsius at sea level."),
    KnowledgeEntry(("freezing point", "water"), "Water freezes at 0 degrees Celsius."),
    # Conversions
    KnowledgeEntry(("feet", "mile"), "There are 5,280 feet in a mile."),
    KnowledgeEntry(("inches", "foot"), "There are 12 inches in a foot."),
    KnowledgeEntry(("value", "pi"), "Pi is approximately 3.14159."),
    # History and trivia
    KnowledgeEntry(("independence", "india"), "India gained independence on August 15, 1947."),
    KnowledgeEntry(("tallest mountain",), "Mount Everest is the tallest mountain above sea level."),
    KnowledgeEntry(("largest ocean",), "The Pacific Ocean is the largest ocean on Earth."),
    KnowledgeEntry(("largest mammal",), "The blue whale is the largest mammal on Earth."),
    KnowledgeEntry(("currency", "india"), "The currency of India is the Indian Rupee."),
    # Tech
    KnowledgeEntry(("creator", "python"), "Guido van Rossum created Python."),
    KnowledgeEntry(("creator", "linux"), "Linus Torvalds created Linux."),
    KnowledgeEntry(("what is", "api"), "API stands for Application Programming Interface."),
]


class OfflineKnowledge:
    """Keyword-set lookup over a fixed fact table."""

    def __init__(self, entries: Optional[Iterable[KnowledgeEntry]] = None):
        self.entries: List[KnowledgeEntry] = list(entries if entries is not None else COMMON_KNOWLEDGE)

    def search(self, query: str) -> Optional[str]:
        """Return the answer of the first entry whose keywords all occur in query."""
        q = (query or "").lower()
        if not q.strip():
            return None
        for entry in self.entries:
            if all(k in q for k in entry.keywords):
                return entry.answer
        return None
