"""Error taxonomy for the change-notification core.

Learn: three failure kinds, three propagation rules:

- ObservationError — the change source can't observe the store (connect
  failed, connection dropped, snapshot poll failed). Fatal to that source
  instance: its loop halts and it's reported to the one registered error
  handler. Restarting is the caller's decision.
- DeliveryError — one subscriber couldn't be sent to (timeout, closed
  socket). Logged and counted, never raised past the registry.
- SnapshotError — reading the full table failed. Raised to whoever asked
  for the snapshot, and nobody else.
"""


class TickerError(Exception):
    """Base class for all stock ticker errors."""


class ObservationError(TickerError):
    """The change source failed to start or lost its connection."""


class DeliveryError(TickerError):
    """Sending a message to a single subscriber failed."""

    def __init__(self, subscriber_id: str, reason: str):
        super().__init__(f"delivery to {subscriber_id} failed: {reason}")
        self.subscriber_id = subscriber_id
        self.reason = reason


class SnapshotError(TickerError):
    """Reading the current state of the table failed."""
