"""
Brain module for Orvion.
Remote reasoning client, reply parsing and token streaming.
"""
from orvion.brain.acknowledgments import Acknowledger, Acknowledgment
from orvion.brain.reasoning_client import ReasoningClient, build_prompt
from orvion.brain.response_parser import parse_reasoning_reply
from orvion.brain.stream_dispatcher import EventSink, StreamDispatcher, StreamSession

__all__ = [
    "Acknowledger",
    "Acknowledgment",
    "ReasoningClient",
    "build_prompt",
    "parse_reasoning_reply",
    "EventSink",
    "StreamDispatcher",
    "StreamSession",
]
