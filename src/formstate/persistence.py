"""
Persistence coordination: deferred actions, cleanup actions and the save pipeline.

Attachment-bearing fields cannot touch the attachment store while preparing a
save: on create the owning record has no identifier yet. Instead they return a
FieldPersistenceResult carrying deferred actions, which the
PersistenceCoordinator runs once the record store has assigned an identifier.

Ordering per save (FormPersistence.save):
1. form.prepare_for_save()   -> merged record data, deferred actions queued
2. coordinator.run_cleanup() -> attachments of removed items released
3. record_store.save()       -> identifier assigned
4. coordinator.run_deferred(record)

Queues are request-scoped (one coordinator per FormContext). A failing action
is logged, the queue is emptied, and the exception propagates. No retry.
"""

import logging
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass, field
from typing import Any, Callable, ContextManager, Dict, Generator, List, Optional, Tuple

from formstate.contracts import RecordStore
from formstate.errors import CleanupFailure, PersistenceOrderError

logger = logging.getLogger(__name__)

DeferredAction = Callable[[Any], None]
CleanupAction = Callable[[], None]


@dataclass(frozen=True)
class FieldPersistenceResult:
    """Outcome of preparing one field for save.

    Attributes:
        value: Normalized value to store under the field's key
        deferred_actions: Actions to run after the record has an identifier
        should_persist: False when the field stores nothing in the record data
        meaningful: Explicit meaningfulness; None derives it from ``value``
    """
    value: Any = None
    deferred_actions: Tuple[DeferredAction, ...] = ()
    should_persist: bool = True
    meaningful: Optional[bool] = None

    @classmethod
    def make(
        cls,
        value: Any,
        deferred: Optional[List[DeferredAction]] = None,
        should_persist: bool = True,
        meaningful: Optional[bool] = None,
    ) -> 'FieldPersistenceResult':
        return cls(
            value=value,
            deferred_actions=tuple(deferred or ()),
            should_persist=should_persist,
            meaningful=meaningful,
        )

    @classmethod
    def empty(cls) -> 'FieldPersistenceResult':
        """Nothing to store, nothing to run."""
        return cls(should_persist=False, meaningful=False)

    @classmethod
    def skip(cls, deferred: Optional[List[DeferredAction]] = None) -> 'FieldPersistenceResult':
        """Store nothing but still run ``deferred``."""
        return cls(deferred_actions=tuple(deferred or ()), should_persist=False)

    @property
    def is_meaningful(self) -> bool:
        if self.meaningful is not None:
            return self.meaningful
        # Local import: fields imports this module
        from formstate.fields import value_is_meaningful
        return value_is_meaningful(self.value)


@dataclass(frozen=True)
class RecordRef:
    """Identity of a persisted record as seen by deferred actions."""
    owner_type: str
    owner_id: Any

    @property
    def has_identifier(self) -> bool:
        return self.owner_id is not None


@dataclass
class Entity:
    """Record handed to the RecordStore: owner type, data and (once saved) identifier."""
    owner_type: str
    data: Dict[str, Any] = field(default_factory=dict)
    identifier: Any = None

    @property
    def exists(self) -> bool:
        return self.identifier is not None

    def ref(self) -> RecordRef:
        return RecordRef(self.owner_type, self.identifier)


class PersistenceCoordinator:
    """Request-scoped queues of deferred and cleanup actions.

    Both queues are FIFO and every action runs at most once.
    """

    def __init__(self):
        self._deferred: List[DeferredAction] = []
        self._cleanup: List[CleanupAction] = []

    def add_deferred_action(self, action: DeferredAction) -> None:
        """Queue ``action(record)`` to run after the record has an identifier."""
        if not callable(action):
            raise TypeError(f"Deferred action must be callable, got {type(action).__name__}")
        self._deferred.append(action)
        logger.debug(f"Queued deferred action #{len(self._deferred)}")

    def add_cleanup_action(self, action: CleanupAction) -> None:
        """Queue a zero-argument action releasing a removed item's resources."""
        if not callable(action):
            raise TypeError(f"Cleanup action must be callable, got {type(action).__name__}")
        self._cleanup.append(action)
        logger.debug(f"Queued cleanup action #{len(self._cleanup)}")

    @property
    def pending_deferred(self) -> int:
        return len(self._deferred)

    @property
    def pending_cleanup(self) -> int:
        return len(self._cleanup)

    def run_deferred(self, record: Any) -> None:
        """Run every deferred action against ``record``, FIFO, then empty the queue.

        Args:
            record: The saved record (anything exposing ``owner_id``)

        Raises:
            PersistenceOrderError: If the record has no identifier yet. The
                queue is left intact so the caller can retry after saving.
        """
        if getattr(record, 'owner_id', None) is None:
            raise PersistenceOrderError(
                f"Cannot run {len(self._deferred)} deferred action(s): record has no identifier"
            )

        actions, self._deferred = self._deferred, []
        logger.debug(f"Running {len(actions)} deferred action(s) for {record!r}")
        for position, action in enumerate(actions, start=1):
            try:
                action(record)
            except Exception as e:
                logger.error(f"Deferred action #{position} failed for {record!r}: {e}")
                raise

    def run_cleanup(self) -> None:
        """Run every cleanup action FIFO, then empty the queue.

        Raises:
            CleanupFailure: Wrapping the first failing action's exception.
        """
        actions, self._cleanup = self._cleanup, []
        if actions:
            logger.debug(f"Running {len(actions)} cleanup action(s)")
        for position, action in enumerate(actions, start=1):
            try:
                action()
            except Exception as e:
                logger.error(f"Cleanup action #{position} failed: {e}")
                raise CleanupFailure(f"Cleanup action #{position} failed: {e}", original=e) from e

    def discard(self) -> None:
        """Drop every queued action without running it."""
        if self._deferred or self._cleanup:
            logger.debug(
                f"Discarding {len(self._deferred)} deferred and {len(self._cleanup)} cleanup action(s)"
            )
        self._deferred = []
        self._cleanup = []

    @contextmanager
    def request_scope(self) -> Generator['PersistenceCoordinator', None, None]:
        """Discard queued actions if the wrapped block raises.

        Example:
            with context.coordinator.request_scope():
                form.prepare_for_save(submission, context)
                ...
        """
        try:
            yield self
        except BaseException:
            self.discard()
            raise


class FormPersistence:
    """Save pipeline tying a form, its request context and a record store together."""

    def __init__(self, record_store: Any, transaction: Optional[Callable[[], ContextManager]] = None):
        """
        Args:
            record_store: RecordStore collaborator (see formstate.contracts)
            transaction: Optional factory returning a context manager wrapping
                save + deferred actions (e.g. a database transaction)
        """
        if not isinstance(record_store, RecordStore):
            raise TypeError(f"{type(record_store).__name__} does not implement RecordStore")
        self.record_store = record_store
        self.transaction = transaction

    def save(self, form: Any, raw_input: Any, context: Any) -> Entity:
        """Reconcile submitted input with stored data and persist the record.

        Args:
            form: formstate.form.Form
            raw_input: Flat or nested submitted data, or a parsed Submission
            context: formstate.context.FormContext for this request

        Returns:
            The saved Entity (identifier assigned)
        """
        from formstate.submission import Submission

        submission = raw_input if isinstance(raw_input, Submission) else Submission.from_input(raw_input)
        coordinator = context.coordinator

        with coordinator.request_scope():
            with (self.transaction() if self.transaction is not None else nullcontext()):
                data = form.prepare_for_save(submission, context)

                entity = Entity(
                    owner_type=context.owner_type,
                    data={**(context.stored_data or {}), **data},
                    identifier=context.record.owner_id if context.record is not None else None,
                )

                coordinator.run_cleanup()

                entity.identifier = self.record_store.save(entity)
                context.set_record(entity.ref())
                logger.debug(f"Saved {entity.owner_type} #{entity.identifier}")

                coordinator.run_deferred(context.record)

        return entity
