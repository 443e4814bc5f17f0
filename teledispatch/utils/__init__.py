"""Utility functions for teledispatch."""

import asyncio
import inspect
import json
import logging
import os
import re
from functools import wraps
from typing import Awaitable, Callable, ParamSpec, TypeVar

T = TypeVar("T")
P = ParamSpec("P")
logger = logging.getLogger(__name__)


def bounded_retry(
    max_attempts: int = 5, backoff_s: float = 2.0
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator for retrying an async operation a bounded number of times.

    The delay grows linearly with the attempt number (backoff_s, 2*backoff_s, ...).
    The last exception is re-raised once all attempts are used.

    Args:
        max_attempts: Total number of attempts including the first call (default: 5)
        backoff_s: Base delay in seconds between attempts (default: 2.0)

    Returns:
        Decorator function
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            attempts = max(1, max_attempts)
            for attempt in range(1, attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if attempt >= attempts:
                        logger.error("%s: giving up after %d attempts: %s", func.__name__, attempts, e)
                        raise
                    delay = backoff_s * attempt
                    logger.warning(
                        "%s failed (%s), retrying in %.1fs (attempt %d/%d)",
                        func.__name__,
                        e,
                        delay,
                        attempt,
                        attempts,
                    )
                    await asyncio.sleep(delay)
            raise RuntimeError(f"Retry logic failed unexpectedly in {func.__name__}")

        return wrapper

    return decorator


def expand_env_vars(config: object) -> object:
    """Recursively expand environment variables in config.

    Replaces ${VAR} patterns with environment variable values.

    Args:
        config: Configuration object (dict, list, str, or primitive)

    Returns:
        Configuration with all ${VAR} patterns replaced
    """
    if isinstance(config, dict):
        return {k: expand_env_vars(v) for k, v in config.items()}
    if isinstance(config, list):
        return [expand_env_vars(item) for item in config]
    if isinstance(config, str):

        def replace_env_var(match: re.Match[str]) -> str:
            env_var = match.group(1)
            return os.getenv(env_var, match.group(0))

        return re.sub(r"\$\{([^}]+)\}", replace_env_var, config)
    return config


async def maybe_await(value: object) -> object:
    """Await value if it is awaitable (hooks may be sync or async)."""
    if inspect.isawaitable(value):
        return await value
    return value


def snake_case(value: str) -> str:
    """Convert an arbitrary name ("My-App Name", "myAppName") to snake_case."""
    value = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", value)
    parts = re.split(r"[^A-Za-z0-9]+", value)
    return "_".join(part.lower() for part in parts if part)


def safe_stringify(obj: object) -> str:
    """Serialize to JSON, stringifying anything json can't encode natively."""
    return json.dumps(obj, default=str, ensure_ascii=False)
