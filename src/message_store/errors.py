"""Exception types raised by the message store."""
from __future__ import annotations


class MessageStoreError(RuntimeError):
    """Base class for message store failures."""


class BackendError(MessageStoreError):
    """The underlying key/value store rejected a call."""


class OperationTimeoutError(MessageStoreError):
    """A queued operation did not finish within the watchdog timeout."""


class InvalidMessageError(MessageStoreError, ValueError):
    """A message is missing the fields needed to store it."""
