"""
Rollback bookkeeping for host mutations.

Each mutating step registers the action that undoes it. If the run fails the
actions run in reverse registration order; if it succeeds they are discarded.
"""

import logging
from contextlib import AsyncExitStack
from typing import Any, Awaitable, Callable, List

from src.i18n import _


class RollbackStack:
    """Deferred undo actions wrapped around an AsyncExitStack."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._stack = AsyncExitStack()
        self.descriptions: List[str] = []

    async def __aenter__(self) -> "RollbackStack":
        await self._stack.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is not None and self.descriptions:
            self.logger.warning(_("Starting installation rollback..."))
        result = await self._stack.__aexit__(exc_type, exc_val, exc_tb)
        if exc_type is not None and self.descriptions:
            self.logger.warning(_("Rollback completed"))
        return result

    def push(
        self, description: str, action: Callable[..., Awaitable[Any]], *args: Any
    ) -> None:
        """Register an undo action; it runs only when the run fails."""

        async def _undo(*undo_args):
            self.logger.info("Rollback: %s", description)
            try:
                await action(*undo_args)
            except Exception as error:  # pylint: disable=broad-exception-caught
                # A failing undo must not prevent the remaining ones
                self.logger.error("Rollback step '%s' failed: %s", description, error)

        self.descriptions.append(description)
        self._stack.push_async_callback(_undo, *args)

    def commit(self) -> None:
        """Forget all registered undo actions after a successful run."""
        self._stack.pop_all()
        self.descriptions.clear()
