"""
Orvion assistant core.

Command resolution (local intents, remote reasoning, offline fallback),
dialog safety gates, response caching and cancellable token streaming.
"""

__version__ = "0.4.0"
