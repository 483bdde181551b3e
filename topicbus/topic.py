"""
Hierarchical topic matching.

Topics are '/' separated segments. Subscription patterns may use two wildcards,
each only as a whole segment:

    +   matches exactly one segment          devices/+/status
    #   matches zero or more trailing ones   logs/#

'#' is only valid as the final segment of a pattern.
"""
from typing import Any, List

from .errors import InvalidPattern, InvalidTopic


SEPARATOR = '/'
SINGLE_LEVEL = '+'
MULTI_LEVEL = '#'


def split_topic(value: str) -> List[str]:
    """Split a topic or pattern into its segments"""
    return value.split(SEPARATOR)


def is_wildcard(pattern: str) -> bool:
    """True if any segment of the pattern is a wildcard"""
    return any(segment in (SINGLE_LEVEL, MULTI_LEVEL) for segment in split_topic(pattern))


def matches(topic: str, pattern: str) -> bool:
    """
    Check whether a concrete topic matches a subscription pattern.
    Wildcard characters in the topic itself are compared literally.
    """
    topic_parts = split_topic(topic)
    pattern_parts = split_topic(pattern)
    last = len(pattern_parts) - 1

    j = 0
    for i, segment in enumerate(pattern_parts):
        if segment == MULTI_LEVEL:
            # Only valid in the last position; anything else never matches
            return i == last

        if j >= len(topic_parts):
            return False

        if segment != SINGLE_LEVEL and segment != topic_parts[j]:
            return False

        j += 1

    return j == len(topic_parts)


def validate_topic(topic: Any) -> str:
    """Ensure a topic can be published to"""
    if topic is None:
        raise InvalidTopic("Topic is required to publish a message")
    if not isinstance(topic, str):
        raise InvalidTopic(f"Topic must be a string, got {type(topic).__name__}")
    if not topic:
        raise InvalidTopic("Topic is required to publish a message")
    return topic


def validate_pattern(pattern: Any) -> str:
    """Ensure a pattern can be subscribed to"""
    if pattern is None:
        raise InvalidPattern("Topic pattern is required for subscription")
    if not isinstance(pattern, str):
        raise InvalidPattern(f"Topic pattern must be a string, got {type(pattern).__name__}")
    if not pattern:
        raise InvalidPattern("Topic pattern is required for subscription")

    segments = split_topic(pattern)
    for index, segment in enumerate(segments):
        if MULTI_LEVEL not in segment:
            continue
        if segment != MULTI_LEVEL or index != len(segments) - 1:
            raise InvalidPattern(
                f"Invalid pattern '{pattern}': '{MULTI_LEVEL}' is only allowed as the final segment"
            )

    return pattern
