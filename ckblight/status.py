"""Result status of processing a peer protocol message."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from enum import IntEnum

BAD_MESSAGE_BAN_TIME = timedelta(minutes=5)


class StatusCode(IntEnum):
    """Three-digit status codes.

    1xx informational, 2xx success, 4xx errors caused by the remote peer,
    5xx local errors.
    """

    OK = 200

    MALFORMED_PROTOCOL_MESSAGE = 400
    UNEXPECTED_PROTOCOL_MESSAGE = 401

    INVALID_LAST_STATE = 411

    PEER_IS_NOT_ON_PROCESS = 421
    INVALID_CHAIN_ROOT_FOR_SAMPLES = 422
    INVALID_TOTAL_DIFFICULTY_FOR_SAMPLES = 423
    INVALID_COMPACT_TARGET = 424
    INVALID_TOTAL_DIFFICULTY = 425
    INVALID_NONCE = 426
    INVALID_REORG_HEADERS = 427
    INVALID_PARENT_HASH = 428
    FAILED_TO_VERIFY_THE_PROOF = 429
    INVALID_SEND_BLOCK_PROOF = 430

    INTERNAL_ERROR = 500
    NETWORK = 501

    def with_context(self, context: object) -> Status:
        """Build a status carrying this code and a context message."""
        return Status(self, context)


@dataclass(frozen=True, eq=False)
class Status:
    """A status code with an optional context; equality looks at the code only."""

    code: StatusCode = StatusCode.OK
    context: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "code", StatusCode(self.code))
        if self.context is not None:
            object.__setattr__(self, "context", str(self.context))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Status):
            return NotImplemented
        return self.code == other.code

    def __hash__(self) -> int:
        return hash(self.code)

    def __str__(self) -> str:
        head = f"{self.code.name}({self.code.value})"
        if self.context is None:
            return head
        return f"{head}: {self.context}"

    @classmethod
    def ok(cls) -> Status:
        """Return an OK status."""
        return cls(StatusCode.OK)

    def is_ok(self) -> bool:
        return self.code == StatusCode.OK

    def should_ban(self) -> timedelta | None:
        """Ban duration for the peer, or None when it should not be banned."""
        if 400 <= self.code < 500:
            return BAD_MESSAGE_BAN_TIME
        return None

    def should_warn(self) -> bool:
        """Whether the status deserves a warning log."""
        return 500 <= self.code < 600