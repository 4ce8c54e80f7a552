"""
Collaborator interfaces consumed by formstate.

The library never talks to storage directly; applications pass objects
satisfying these protocols through the FormContext / FormPersistence.
"""

from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, TYPE_CHECKING, runtime_checkable

if TYPE_CHECKING:
    from formstate.context import FormContext
    from formstate.persistence import Entity, FieldPersistenceResult
    from formstate.submission import Submission


@runtime_checkable
class AttachmentStore(Protocol):
    """Owner of uploaded attachments and their collections.

    Attachments are addressed by positive integer ids. ``find`` returns
    attachment mappings carrying at least an ``'id'`` key, in display order.
    """

    def attach(self, ids: List[int], owner_type: str, owner_id: Any, collection_name: str) -> None:
        ...

    def set_order(self, collection_name: str, ordered_ids: List[int]) -> None:
        ...

    def set_properties(self, attachment_id: int, props: Dict[str, Any]) -> None:
        ...

    def delete_where(self, collection_name: str, ids: List[int]) -> None:
        ...

    def find(self, owner_type: str, owner_id: Any, collection_name: str) -> List[Mapping[str, Any]]:
        ...


@runtime_checkable
class RecordStore(Protocol):
    """Persists records and returns their identifier."""

    def save(self, entity: 'Entity') -> Any:
        ...


@runtime_checkable
class HandlesPersistence(Protocol):
    """Field that prepares its own submitted value for save."""

    def prepare_for_save(
        self,
        raw: Any,
        submission: Optional['Submission'] = None,
        context: Optional['FormContext'] = None,
        stored: Any = None,
    ) -> 'FieldPersistenceResult':
        ...


@runtime_checkable
class HandlesNestedCleanup(Protocol):
    """Field owning resources that must be released when its item is removed."""

    def nested_cleanup_actions(self, stored: Any, context: Optional['FormContext'] = None) -> List[Callable[[], None]]:
        ...
