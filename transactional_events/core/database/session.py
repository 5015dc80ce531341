"""SQLAlchemy Session as the unit-of-work collaborator of the event bus.

SessionUnitOfWork ties one Session transaction to one TransactionContext:

    with SessionUnitOfWork(session, bus) as uow:
        uow.create(User(email="ada@example.com"))
        order.status = "shipped"
        uow.update(order)

On a clean exit BEFORE_COMMIT listeners run while the session transaction is
still open, then the session commits and AFTER_COMMIT listeners run. An
exception in the block, a vetoing BEFORE_COMMIT listener or a failed commit
rolls the session back and delivers AFTER_ROLLBACK instead.
"""

from __future__ import annotations

import logging
from contextlib import ExitStack
from typing import TYPE_CHECKING, Any

from transactional_events.core.events.transaction import ExecutionScope
from transactional_events.core.lifecycle.dispatcher import EntityLifecycleDispatcher

if TYPE_CHECKING:
    from types import TracebackType

    from sqlalchemy.orm import Session

    from transactional_events.core.events.base import Event
    from transactional_events.core.events.bus import EventBus
    from transactional_events.core.events.transaction import TransactionContext
    from transactional_events.core.lifecycle.dispatcher import LifecycleResult

logger = logging.getLogger(__name__)


class SessionUnitOfWork:
    """Context manager running a Session transaction as an evented unit of work.

    Attributes:
        session: The SQLAlchemy session committed or rolled back on exit
        bus: Bus receiving the change events
        lifecycle: Dispatcher wrapping create/update/remove
        scope: Execution scope holding the transaction while the block runs
        transaction: The current TransactionContext inside the block
    """

    def __init__(
        self,
        session: Session,
        bus: EventBus,
        lifecycle: EntityLifecycleDispatcher | None = None,
        *,
        scope: ExecutionScope | None = None,
    ) -> None:
        self.session = session
        self.bus = bus
        self.lifecycle = lifecycle or EntityLifecycleDispatcher(bus)
        self.scope = scope or ExecutionScope()
        self.transaction: TransactionContext | None = None
        self._stack: ExitStack | None = None

    def __enter__(self) -> SessionUnitOfWork:
        stack = ExitStack()
        self.transaction = stack.enter_context(
            self.bus.unit_of_work(
                self.scope,
                commit=self.session.commit,
                rollback=self.session.rollback,
            )
        )
        self._stack = stack
        logger.debug(
            "Session unit of work started",
            extra={"transaction_id": self.transaction.id, "scope": self.scope.name},
        )
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool:
        stack, self._stack = self._stack, None
        if stack is None:
            return False
        return bool(stack.__exit__(exc_type, exc_val, exc_tb))

    def create(self, entity: Any) -> LifecycleResult:
        """Add and flush a new entity, then publish ``<type>.created``."""
        self.scope.require_current("create")
        return self.lifecycle.wrap_create(entity, self._add, self.scope)

    def update(self, entity: Any) -> LifecycleResult:
        """Flush a modified entity, then publish ``<type>.updated``.

        A rejected update expires the entity, discarding its unflushed
        changes so the commit does not write them.
        """
        self.scope.require_current("update")
        result = self.lifecycle.wrap_update(entity, self._add, self.scope)
        if not result.ok and entity in self.session:
            self.session.expire(entity)
        return result

    def remove(self, entity: Any) -> LifecycleResult:
        """Delete and flush an entity, then publish ``<type>.removed``."""
        self.scope.require_current("remove")
        return self.lifecycle.wrap_remove(entity, self._delete, self.scope)

    def publish(self, event: Event) -> None:
        """Publish an event on this unit of work's transaction."""
        self.bus.publish(event, self.scope)

    def _add(self, entity: Any) -> None:
        self.session.add(entity)
        self.session.flush()

    def _delete(self, entity: Any) -> None:
        self.session.delete(entity)
        self.session.flush()


__all__ = ["SessionUnitOfWork"]
