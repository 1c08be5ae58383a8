"""Core forwarding system: ledger, message mapping, sending and polling."""

from .deduplication import DeduplicationService
from .message_processor import MessageProcessor, clean_body, split_text
from .forwarding_engine import ForwardingEngine, ForwardResult
from .poll_loop import PollLoop, RoundResult

__all__ = [
    "DeduplicationService",
    "MessageProcessor",
    "clean_body",
    "split_text",
    "ForwardingEngine",
    "ForwardResult",
    "PollLoop",
    "RoundResult"
]
