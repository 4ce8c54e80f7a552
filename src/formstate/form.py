"""
Form: the root of a schema tree.

Root nodes have no container, so their address is their key. The form binds
the schema for display (every repeating group gets its ItemList) and prepares
submitted data for save (deferred actions are queued on the request's
coordinator).
"""

import logging
from typing import Any, Dict, Iterator, List, Optional, TYPE_CHECKING

from formstate.fields import check_schema_keys, iter_schema_fields, walk_bound_fields

if TYPE_CHECKING:
    from formstate.context import FormContext
    from formstate.submission import Submission

logger = logging.getLogger(__name__)


class Form:
    """Root schema container for one record type."""

    def __init__(self, owner_type: Optional[str] = None):
        self.owner_type = owner_type
        self.schema_nodes: List[Any] = []

    @classmethod
    def make(cls, owner_type: Optional[str] = None) -> 'Form':
        return cls(owner_type)

    def schema(self, nodes: List[Any]) -> 'Form':
        """Declare the root schema.

        Raises:
            StructuralError: If two root-level nodes share a key, or a keyed
                node cannot be saved.
        """
        check_schema_keys(nodes, 'form')
        self.schema_nodes = list(nodes)
        return self

    def get_schema(self) -> List[Any]:
        return list(self.schema_nodes)

    def all_fields(self) -> Iterator[Any]:
        """Root-level keyed nodes (layout wrappers looked through)."""
        return iter_schema_fields(self.schema_nodes)

    def field(self, key: str) -> Any:
        for node in self.all_fields():
            if node.key == key:
                return node
        raise KeyError(f"Form has no field {key!r}")

    def bind(self, context: Optional['FormContext'] = None, data: Optional[Dict[str, Any]] = None) -> List[Any]:
        """Bind the schema to stored data for display.

        Args:
            context: Request context (stored data, record, attachment store)
            data: Values to display; defaults to ``context.stored_data``
        """
        if data is None:
            data = context.stored_data if context is not None else {}
        return [node.bind_for_display(None, data, context) for node in self.schema_nodes]

    def bound_fields(self, context: Optional['FormContext'] = None, data: Optional[Dict[str, Any]] = None) -> List[Any]:
        """Every bound keyed node, depth first (items included)."""
        return list(walk_bound_fields(self.bind(context, data)))

    def prepare_for_save(self, submission: 'Submission', context: 'FormContext') -> Dict[str, Any]:
        """Normalize submitted values and queue deferred actions.

        Returns:
            Record data keyed by root field key (only fields that persist)
        """
        stored = context.stored_data or {}
        data: Dict[str, Any] = {}
        for node in self.all_fields():
            result = node.prepare_for_save(submission.get(node.key), submission, context, stored.get(node.key))
            for action in result.deferred_actions:
                context.coordinator.add_deferred_action(action)
            if result.should_persist:
                data[node.key] = result.value
        logger.debug(f"Prepared {len(data)} value(s), {context.coordinator.pending_deferred} deferred action(s)")
        return data

    def to_dict(self) -> Dict[str, Any]:
        return {
            'owner_type': self.owner_type,
            'schema': [node.to_dict() for node in self.all_fields()],
        }
