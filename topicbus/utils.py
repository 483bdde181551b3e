import functools
import string
import time

from random import choice
from typing import Any, Callable


def synchronized(lock_attr: str = '_lock') -> Callable:
    """Run the decorated method while holding the instance lock named by lock_attr"""
    if not lock_attr:
        raise ValueError('lock not found')

    def wrapper(func):
        @functools.wraps(func)
        def locked_wrapper(self, *args, **kwargs) -> Any:
            with getattr(self, lock_attr):
                return func(self, *args, **kwargs)

        return locked_wrapper

    return wrapper


def random_string(size: int = 5) -> str:
    chars = string.ascii_lowercase + string.digits
    return ''.join(choice(chars) for _ in range(size))


def new_subscription_id(prefix: str = 'sub') -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{random_string()}"
