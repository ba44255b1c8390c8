"""
Parley: an assistant for forwarded chat conversations.

Forward messages to the bot, run ``/analyze``, and pick a reply style or
type a custom instruction. Primary entry point::

    from parley import ParleyApp, ParleyConfig

    app = await ParleyApp.create(ParleyConfig.from_env())
    await app.run()
"""

from parley.app import ParleyApp
from parley.context.assembler import ContextAssembler
from parley.events.bus import EventBus, ParleyEvent
from parley.lanes import SerialExecutor
from parley.limits.validator import LimitsValidator
from parley.models import (
    AssistantReply,
    BufferedItem,
    InferenceConfig,
    ItemKind,
    LimitsConfig,
    ParleyConfig,
    Session,
    SessionState,
)
from parley.router import Router
from parley.state.machine import SessionRejection, SessionStateMachine
from parley.store.sessions import SessionStore

__version__ = "0.1.0"

__all__ = [
    # Core
    "ParleyApp",
    "Router",
    "SessionStateMachine",
    "ContextAssembler",
    "SerialExecutor",
    "LimitsValidator",
    "SessionStore",
    # Config
    "ParleyConfig",
    "LimitsConfig",
    "InferenceConfig",
    # Models
    "Session",
    "SessionState",
    "BufferedItem",
    "ItemKind",
    "AssistantReply",
    "SessionRejection",
    # Events
    "EventBus",
    "ParleyEvent",
]
