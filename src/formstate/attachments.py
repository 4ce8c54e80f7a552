"""
Attachment-bearing fields.

An AttachmentField does not store its files in the record data. Files live in
a named collection owned by the AttachmentStore collaborator; the record only
keeps (for nested fields) the collection name.

On save the field reads its side-channel inputs (uploaded/deleted/order/props,
keyed by the field's meta key), freezes them into an AttachmentOperation and
returns a deferred action applying it once the record has an identifier:

    delete -> attach -> order -> props

When an item holding the field is removed, nested_cleanup_actions() returns
actions deleting every attachment of the item's collection.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, TYPE_CHECKING

from formstate.collection_resolver import resolve_collection_name
from formstate.config import get_config
from formstate.fields import Field
from formstate.persistence import FieldPersistenceResult
from formstate.state_path import is_inside_repeating_group, meta_key_from_state_path
from formstate.submission import normalize_props, parse_id_list

if TYPE_CHECKING:
    from formstate.context import FormContext
    from formstate.submission import Submission

logger = logging.getLogger(__name__)


def attachment_id(attachment: Any) -> Any:
    """Identifier of an attachment returned by AttachmentStore.find()."""
    if isinstance(attachment, Mapping):
        return attachment.get('id')
    return getattr(attachment, 'id', None)


@dataclass(frozen=True)
class AttachmentPayload:
    """Side-channel inputs submitted for one attachment field."""
    meta_key: str
    uploaded: Tuple[int, ...] = ()
    deleted: Tuple[int, ...] = ()
    order: Tuple[int, ...] = ()
    props: Tuple[Tuple[int, Tuple[Tuple[str, Any], ...]], ...] = ()

    @classmethod
    def capture(cls, submission: Optional['Submission'], state_path: str) -> 'AttachmentPayload':
        """Read side-channel inputs for ``state_path``.

        Tries the canonical address first, then every aliased spelling of it
        (client addresses of items that received a server-minted id).
        """
        config = get_config()
        canonical_key = meta_key_from_state_path(state_path)
        if submission is None:
            return cls(meta_key=canonical_key)

        for path in submission.candidate_paths(state_path):
            meta_key = meta_key_from_state_path(path)
            props = normalize_props(submission.side_channel(config.props_key, meta_key))
            payload = cls(
                meta_key=meta_key,
                uploaded=tuple(parse_id_list(submission.side_channel(config.uploaded_key, meta_key))),
                deleted=tuple(parse_id_list(submission.side_channel(config.deleted_key, meta_key))),
                order=tuple(parse_id_list(submission.side_channel(config.order_key, meta_key))),
                props=tuple((attachment, tuple(values.items())) for attachment, values in props.items()),
            )
            if payload.has_changes:
                if path != state_path:
                    logger.debug(f"Attachment inputs for {state_path!r} found under alias {path!r}")
                return payload
        return cls(meta_key=canonical_key)

    @property
    def has_changes(self) -> bool:
        return bool(self.uploaded or self.deleted or self.order or self.props)

    def props_dict(self) -> Dict[int, Dict[str, Any]]:
        return {attachment: dict(values) for attachment, values in self.props}


@dataclass(frozen=True)
class AttachmentOperation:
    """Immutable unit of attachment work queued for after the record save."""
    id: str
    created_at: float
    collection_name: str
    payload: AttachmentPayload

    @classmethod
    def create(cls, collection_name: str, payload: AttachmentPayload) -> 'AttachmentOperation':
        """Create an operation with auto-generated id and timestamp."""
        return cls(
            id=str(uuid.uuid4()),
            created_at=time.time(),
            collection_name=collection_name,
            payload=payload,
        )

    def apply(self, store: Any, record: Any) -> None:
        """Run the operation against ``store`` for the saved ``record``."""
        payload = self.payload
        if payload.deleted:
            store.delete_where(self.collection_name, list(payload.deleted))
        if payload.uploaded:
            store.attach(list(payload.uploaded), record.owner_type, record.owner_id, self.collection_name)
        if payload.order:
            store.set_order(self.collection_name, list(payload.order))
        for attachment, props in payload.props_dict().items():
            store.set_properties(attachment, props)
        logger.debug(f"Applied attachment operation {self.id} to {self.collection_name!r}")

    def to_dict(self) -> Dict[str, Any]:
        """Export to JSON-serializable dict."""
        return {
            'id': self.id,
            'created_at': self.created_at,
            'collection_name': self.collection_name,
            'meta_key': self.payload.meta_key,
            'uploaded': list(self.payload.uploaded),
            'deleted': list(self.payload.deleted),
            'order': list(self.payload.order),
            'props': {str(k): v for k, v in self.payload.props_dict().items()},
        }


class AttachmentField(Field):
    """Field whose value is an ordered collection of attachments."""

    TYPE = 'attachments'

    def __init__(self, key: str):
        super().__init__(key)
        self.declared_collection: Optional[str] = None
        self.collection_override: Optional[str] = None
        self.multiple_flag = False
        self.accept_types: List[str] = []
        self.max_files_value: Optional[int] = None
        self.prop_names: List[str] = []

    def _after_clone(self) -> None:
        super()._after_clone()
        self.accept_types = list(self.accept_types)
        self.prop_names = list(self.prop_names)

    # ========== DECLARATION ==========

    def collection(self, name: str):
        self.declared_collection = name
        return self

    def use_collection_override(self, name: Optional[str]):
        """Pin this instance to an existing collection name."""
        self.collection_override = name
        return self

    def multiple(self, multiple: bool = True, max_files: Optional[int] = None):
        self.multiple_flag = multiple
        if max_files is not None:
            self.max_files_value = max_files
        return self

    def accept(self, mime_types: List[str]):
        self.accept_types = list(mime_types)
        return self

    def max_files(self, count: int):
        self.max_files_value = count
        return self

    def props(self, *names: str):
        self.prop_names = list(names)
        return self

    # ========== COLLECTION ==========

    @property
    def meta_key(self) -> str:
        return meta_key_from_state_path(self.state_path)

    @property
    def collection_name(self) -> Optional[str]:
        """Resolved collection, or None for template instances."""
        if self.is_template:
            return None
        return resolve_collection_name(self)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            'collection': self.declared_collection,
            'multiple': self.multiple_flag,
            'accept': list(self.accept_types),
            'max_files': self.max_files_value,
            'props': list(self.prop_names),
        })
        return data

    # ========== DISPLAY ==========

    def apply_stored_value(self, stored: Any, context: Optional['FormContext'] = None) -> None:
        if isinstance(stored, str) and stored:
            self.use_collection_override(stored)
            self.set_value([])
        elif isinstance(stored, list):
            self.set_value(list(stored))
        else:
            self.set_value([])

    def prepare_for_display(self, context: Optional['FormContext'] = None) -> None:
        if self.is_template or context is None or not context.has_record or context.attachment_store is None:
            return
        if self.get_value():
            return
        record = context.record
        self.set_value(list(context.attachment_store.find(record.owner_type, record.owner_id, self.collection_name)))

    # ========== PERSISTENCE ==========

    def _existing_ids(self, collection: str, context: Optional['FormContext']) -> List[Any]:
        if context is None or not context.has_record or context.attachment_store is None:
            return []
        record = context.record
        return [attachment_id(a) for a in context.attachment_store.find(record.owner_type, record.owner_id, collection)]

    def prepare_for_save(
        self,
        raw: Any,
        submission: Optional['Submission'] = None,
        context: Optional['FormContext'] = None,
        stored: Any = None,
    ) -> FieldPersistenceResult:
        if self.is_template:
            return FieldPersistenceResult.empty()

        field_instance = self
        if isinstance(stored, str) and stored:
            field_instance = self._clone().use_collection_override(stored)

        collection = field_instance.collection_name
        payload = AttachmentPayload.capture(submission, self.state_path)

        existing = self._existing_ids(collection, context)
        remaining = [a for a in existing if a not in payload.deleted]
        has_attachments = bool(payload.uploaded) or bool(remaining)

        deferred: List[Callable[[Any], None]] = []
        if payload.has_changes:
            if context is None or context.attachment_store is None:
                raise ValueError(f"Attachment field {self.key!r} received uploads but no attachment store is configured")
            operation = AttachmentOperation.create(collection, payload)
            store = context.attachment_store

            def apply_operation(record: Any, operation: AttachmentOperation = operation, store: Any = store) -> None:
                operation.apply(store, record)

            deferred.append(apply_operation)
            logger.debug(f"Queued {operation.to_dict()}")

        if is_inside_repeating_group(self):
            return FieldPersistenceResult.make(collection, deferred, meaningful=has_attachments)
        return FieldPersistenceResult.make(
            collection if has_attachments else None,
            deferred,
            should_persist=False,
            meaningful=has_attachments,
        )

    def nested_cleanup_actions(self, stored: Any, context: Optional['FormContext'] = None) -> List[Callable[[], None]]:
        """Delete every attachment of this item's collection."""
        if self.is_template or not is_inside_repeating_group(self):
            return []
        if context is None or not context.has_record or context.attachment_store is None:
            logger.debug(f"No record context, skipping attachment cleanup for {self.key!r}")
            return []

        field_instance = self._clone().use_collection_override(stored) if isinstance(stored, str) and stored else self
        collection = field_instance.collection_name
        store = context.attachment_store
        record = context.record

        def release_collection() -> None:
            ids = [attachment_id(a) for a in store.find(record.owner_type, record.owner_id, collection)]
            if ids:
                store.delete_where(collection, ids)
            logger.debug(f"Released {len(ids)} attachment(s) from {collection!r}")

        return [release_collection]
