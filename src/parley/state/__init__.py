"""Session lifecycle state machine."""

from parley.state.machine import (
    AnalysisRequiredError,
    EmptyBufferError,
    InstructionTooLongError,
    LimitExceededError,
    NoInstructionError,
    NoSessionError,
    SessionExpiredError,
    SessionRejection,
    SessionStateMachine,
    UnknownActionError,
    UnsupportedContentError,
    build_item,
)

__all__ = [
    "SessionStateMachine",
    "build_item",
    "SessionRejection",
    "LimitExceededError",
    "EmptyBufferError",
    "NoSessionError",
    "SessionExpiredError",
    "AnalysisRequiredError",
    "NoInstructionError",
    "UnknownActionError",
    "InstructionTooLongError",
    "UnsupportedContentError",
]
