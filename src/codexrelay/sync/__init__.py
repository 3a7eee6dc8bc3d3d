"""Synchronization between Codex sessions and chat threads."""

from codexrelay.sync.coordinator import DeliveryReport, SyncCoordinator
from codexrelay.sync.echo import EchoSuppressor
from codexrelay.sync.formatter import EventFormatter, FormattedMessage
from codexrelay.sync.keyed import KeyedSerializer
from codexrelay.sync.message_sync import MessageSync, TurnOutcome

__all__ = [
    "DeliveryReport",
    "EchoSuppressor",
    "EventFormatter",
    "FormattedMessage",
    "KeyedSerializer",
    "MessageSync",
    "SyncCoordinator",
    "TurnOutcome",
]
