"""
Messaging error taxonomy.

None of these ever reach a business caller: publishers log and return False,
consumers log and nack. They exist so the messaging layer can classify what
went wrong internally.
"""


class EventError(Exception):
    """Base class for messaging failures."""


class PublishFailed(EventError):
    """An envelope could not be handed to the broker."""

    def __init__(self, event_type: str, reason: str):
        self.event_type = event_type
        self.reason = reason
        super().__init__(f"Failed to publish {event_type}: {reason}")


class ProcessingError(EventError):
    """A consumed message could not be applied locally."""


class EnvelopeValidationError(ProcessingError):
    """An inbound message is not a well-formed event envelope."""
