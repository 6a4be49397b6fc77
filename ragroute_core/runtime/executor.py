"""
Bounded worker pool for blocking capability calls.

Embedding, vector search, generation, evaluation and planning clients are
all synchronous. The async orchestration layer never calls them directly:
it goes through CapabilityRunner, which executes the call on a shared
ThreadPoolExecutor and bounds it with the capability's timeout.
"""

from __future__ import annotations

import asyncio
import functools
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, TypeVar

from loguru import logger

from ragroute_core.config import settings

from .errors import CapabilityTimeout, ErrorCode, ServiceError

T = TypeVar("T")


class Capability:
    """Names of the external capabilities the pipeline calls."""

    EMBED = "embed"
    SEARCH = "search"
    FETCH_CHUNKS = "fetch_chunks"
    GENERATE = "generate"
    EVALUATE = "evaluate"
    CLASSIFY = "classify"
    PLAN = "plan"
    REWRITE = "rewrite"
    STORE = "store"
    TOOL = "tool"


def default_timeouts() -> dict[str, float]:
    """Per-capability timeouts (seconds) taken from settings."""
    return {
        Capability.EMBED: settings.EMBED_TIMEOUT,
        Capability.SEARCH: settings.SEARCH_TIMEOUT,
        Capability.FETCH_CHUNKS: settings.SEARCH_TIMEOUT,
        Capability.GENERATE: settings.GENERATE_TIMEOUT,
        Capability.EVALUATE: settings.EVALUATE_TIMEOUT,
        Capability.CLASSIFY: settings.PLAN_TIMEOUT,
        Capability.PLAN: settings.PLAN_TIMEOUT,
        Capability.REWRITE: settings.PLAN_TIMEOUT,
        Capability.STORE: settings.STORE_TIMEOUT,
        Capability.TOOL: settings.GENERATE_TIMEOUT,
    }


class CapabilityRunner:
    """
    Runs blocking calls on a bounded thread pool with per-capability timeouts.

    Usage:
        runner = CapabilityRunner(max_workers=4)
        vector = await runner.run(Capability.EMBED, embedder.embed, text,
                                  error_cls=EmbeddingFailure)
    """

    def __init__(
        self,
        max_workers: int | None = None,
        timeouts: dict[str, float] | None = None,
    ):
        self._max_workers = max_workers or settings.WORKER_POOL_SIZE
        self._executor = ThreadPoolExecutor(
            max_workers=self._max_workers,
            thread_name_prefix="ragroute-worker",
        )
        self._timeouts = {**default_timeouts(), **(timeouts or {})}

    @property
    def max_workers(self) -> int:
        return self._max_workers

    def timeout_for(self, capability: str) -> float | None:
        return self._timeouts.get(capability)

    async def run(
        self,
        capability: str,
        fn: Callable[..., T],
        *args: Any,
        error_cls: type[ServiceError] = ServiceError,
        **kwargs: Any,
    ) -> T:
        """
        Execute `fn(*args, **kwargs)` on the pool.

        Args:
            capability: Capability name, selects the timeout.
            fn: Blocking callable.
            error_cls: ServiceError subclass used to report timeouts and
                unexpected exceptions as a failure of this stage.

        Returns:
            Whatever `fn` returns.

        Raises:
            ServiceError: `error_cls` on timeout or unexpected exception. A
                timeout carries a CapabilityTimeout as its cause, and is raised
                as CapabilityTimeout itself when no stage class is given.
                ServiceErrors raised by `fn` propagate unchanged.
        """
        loop = asyncio.get_running_loop()
        timeout = self.timeout_for(capability)
        future = loop.run_in_executor(self._executor, functools.partial(fn, *args, **kwargs))

        try:
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError as e:
            logger.warning(f"{capability} call exceeded {timeout}s timeout")
            message = f"{capability} timed out after {timeout}s"
            timeout_error = CapabilityTimeout(message, cause=e)
            if error_cls is ServiceError:
                raise timeout_error from e
            raise error_cls(message, code=ErrorCode.TIMEOUT, cause=timeout_error) from timeout_error
        except ServiceError:
            raise
        except Exception as e:
            raise error_cls(f"{capability} failed: {e}", cause=e) from e

    def shutdown(self, wait: bool = False) -> None:
        """Stop accepting work; in-flight calls finish on their own."""
        self._executor.shutdown(wait=wait)
