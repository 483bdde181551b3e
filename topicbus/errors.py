"""
Error taxonomy for the broker.
Validation errors are raised to callers; delivery errors never leave the broker.
"""
from typing import Optional


class BrokerError(Exception):
    """Base class for all broker errors"""


class InvalidTopic(BrokerError, ValueError):
    """Raised by publish when the topic is missing or empty"""


class InvalidPattern(BrokerError, ValueError):
    """Raised by subscribe when the pattern is malformed"""


class InvalidCallback(BrokerError, TypeError):
    """Raised by subscribe when the callback is not callable"""


class UnknownSubscription(BrokerError, LookupError):
    """Raised by lookups of a subscription id that is not registered"""

    def __init__(self, subscription_id: str):
        super().__init__(f"Subscription '{subscription_id}' does not exist")
        self.subscription_id = subscription_id


class SubscriberFailure(BrokerError):
    """
    A subscriber callback raised or its awaitable result failed.
    Only ever handed to error handlers, never raised to a publisher.
    """

    def __init__(self,
                 subscription_id: str,
                 pattern: str,
                 topic: str,
                 error: Optional[BaseException]):
        super().__init__(
            f"Subscriber {subscription_id} ({pattern}) failed on topic {topic}: {error!r}"
        )
        self.subscription_id = subscription_id
        self.pattern = pattern
        self.topic = topic
        self.error = error
        self.__cause__ = error
