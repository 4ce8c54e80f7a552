"""
Request-scoped form context.

One FormContext per display or save request. It carries the mode
(create/edit), the owner record reference once known, the stored data being
edited, the attachment store collaborator, and the request-scoped
PersistenceCoordinator and ItemIdRegistry, plus the items whose cleanup is
already queued. Nothing here is process-wide.
"""

import logging
from typing import Any, Dict, Optional, Set

from formstate.contracts import AttachmentStore
from formstate.items import ItemIdRegistry
from formstate.persistence import PersistenceCoordinator, RecordRef

logger = logging.getLogger(__name__)


class FormContext:
    MODE_CREATE = 'create'
    MODE_EDIT = 'edit'

    def __init__(
        self,
        owner_type: str,
        mode: str = MODE_CREATE,
        record: Optional[RecordRef] = None,
        stored_data: Optional[Dict[str, Any]] = None,
        attachment_store: Optional[Any] = None,
        coordinator: Optional[PersistenceCoordinator] = None,
        id_registry: Optional[ItemIdRegistry] = None,
    ):
        if mode not in (self.MODE_CREATE, self.MODE_EDIT):
            raise ValueError(f"Unknown form mode {mode!r}")
        if attachment_store is not None and not isinstance(attachment_store, AttachmentStore):
            raise TypeError(f"{type(attachment_store).__name__} does not implement AttachmentStore")
        self.owner_type = owner_type
        self.mode = mode
        self.record = record
        self.stored_data: Dict[str, Any] = dict(stored_data or {})
        self.attachment_store = attachment_store
        self.coordinator = coordinator or PersistenceCoordinator()
        self.id_registry = id_registry or ItemIdRegistry()
        self._released: Dict[str, Set[str]] = {}

    @classmethod
    def for_create(cls, owner_type: str, attachment_store: Optional[Any] = None) -> 'FormContext':
        return cls(owner_type, cls.MODE_CREATE, attachment_store=attachment_store)

    @classmethod
    def for_edit(
        cls,
        owner_type: str,
        owner_id: Any,
        stored_data: Optional[Dict[str, Any]] = None,
        attachment_store: Optional[Any] = None,
    ) -> 'FormContext':
        if owner_id is None:
            raise ValueError("Editing requires an existing record identifier")
        return cls(
            owner_type,
            cls.MODE_EDIT,
            record=RecordRef(owner_type, owner_id),
            stored_data=stored_data,
            attachment_store=attachment_store,
        )

    @property
    def is_create(self) -> bool:
        return self.mode == self.MODE_CREATE

    @property
    def is_edit(self) -> bool:
        return self.mode == self.MODE_EDIT

    @property
    def has_record(self) -> bool:
        return self.record is not None and self.record.has_identifier

    def set_record(self, record: RecordRef) -> None:
        """Attach the saved record (called once the record store assigned an id)."""
        self.record = record
        logger.debug(f"Context bound to {record.owner_type} #{record.owner_id}")

    def mark_released(self, scope_key: str, stable_id: str) -> None:
        """Record that cleanup for a stored item was queued in this request."""
        self._released.setdefault(scope_key, set()).add(stable_id)

    def is_released(self, scope_key: str, stable_id: str) -> bool:
        return stable_id in self._released.get(scope_key, set())
