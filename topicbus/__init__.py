"""
In-process topic based publish/subscribe broker.
"""

from .errors import (BrokerError, InvalidTopic, InvalidPattern, InvalidCallback,
                     UnknownSubscription, SubscriberFailure)
from .topic import matches, split_topic, is_wildcard, validate_topic, validate_pattern
from .subscription import SubscriptionRegistry, Subscription
from .delivery import DeliveryMode, EventLoopThread
from .config import Config, get_config, initialize_config, configure_logging
from .broker import MessageBroker

__all__ = [
    'BrokerError', 'InvalidTopic', 'InvalidPattern', 'InvalidCallback',
    'UnknownSubscription', 'SubscriberFailure',
    'matches', 'split_topic', 'is_wildcard', 'validate_topic', 'validate_pattern',
    'SubscriptionRegistry', 'Subscription',
    'DeliveryMode', 'EventLoopThread',
    'Config', 'get_config', 'initialize_config', 'configure_logging',
    'MessageBroker'
]
