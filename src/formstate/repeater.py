"""
Repeating group: a field whose value is an ordered list of items, each item
holding one bound copy of the group's child schema.

Declaration:
    RepeatingGroup.make('gallery').schema([
        TextInput.make('title'),
        AttachmentField.make('image'),
    ]).min_items(1).max_items(10)

Addresses: children of item 'a1' resolve to 'gallery.a1.<key>'.

Nesting rule: a group may not be declared directly in another group's child
schema (or behind layout-only wrappers of it). A keyed Section in between is
allowed, as is binding a group programmatically to another group's item scope.
"""

import json
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, TYPE_CHECKING

from formstate.config import get_config
from formstate.errors import StructuralError
from formstate.fields import Field, Layout, check_schema_keys, iter_cleanup_fields, iter_schema_fields
from formstate.items import ItemFactory, ItemList, ItemScope
from formstate.persistence import FieldPersistenceResult
from formstate.request_processor import RequestProcessor
from formstate.state_path import TEMPLATE_TOKEN, is_valid_item_token

if TYPE_CHECKING:
    from formstate.context import FormContext
    from formstate.submission import Submission

logger = logging.getLogger(__name__)


def _find_direct_group(nodes: List[Any]) -> Optional[Any]:
    """First repeating group reachable through layout wrappers only."""
    for node in nodes:
        if isinstance(node, Layout):
            found = _find_direct_group(node.get_child_schema())
            if found is not None:
                return found
        elif getattr(node, 'is_repeating_group', False):
            return node
    return None


class RepeatingGroup(Field):
    """Field holding an ordered list of items built from one child schema."""

    TYPE = 'repeater'
    is_repeating_group = True

    def __init__(self, key: str):
        super().__init__(key)
        self.schema_nodes: List[Any] = []
        self.min_items_value: Optional[int] = None
        self.max_items_value: Optional[int] = None
        self.sortable_flag = True
        self.collapsible_flag = False
        self.add_button_label_text: Optional[str] = None
        self.head_title_template: Optional[str] = None
        self.item_list: Optional[ItemList] = None
        self.template_fields: List[Any] = []

    # ========== DECLARATION ==========

    def schema(self, children: List[Any]):
        """Declare the child schema.

        Raises:
            StructuralError: If a repeating group sits directly in ``children``
                (or inside layout wrappers of it), two children share a key,
                or a keyed child cannot be saved.
        """
        nested = _find_direct_group(children)
        if nested is not None:
            raise StructuralError(
                f"Repeating group {nested.key!r} cannot be nested directly in repeating group {self.key!r}; "
                f"wrap it in a Section"
            )
        check_schema_keys(children, f"repeating group {self.key!r}")
        self.schema_nodes = list(children)
        return self

    def min_items(self, count: int):
        if count < 0:
            raise ValueError(f"min_items must be >= 0, got {count}")
        if self.max_items_value is not None and count > self.max_items_value:
            raise StructuralError(f"min_items={count} exceeds max_items={self.max_items_value} for {self.key!r}")
        self.min_items_value = count
        return self

    def max_items(self, count: int):
        if count < 1:
            raise ValueError(f"max_items must be >= 1, got {count}")
        if self.min_items_value is not None and count < self.min_items_value:
            raise StructuralError(f"max_items={count} is below min_items={self.min_items_value} for {self.key!r}")
        self.max_items_value = count
        return self

    def sortable(self, sortable: bool = True):
        self.sortable_flag = sortable
        return self

    def collapsible(self, collapsible: bool = True):
        self.collapsible_flag = collapsible
        return self

    def add_button_label(self, label: str):
        self.add_button_label_text = label
        return self

    def head_title(self, template: str):
        """Item header template; '{field_key}' placeholders are filled from item data."""
        self.head_title_template = template
        return self

    def get_child_schema(self) -> List[Any]:
        return list(self.schema_nodes)

    # ========== SCOPES ==========

    def item_scope(self, token: str) -> ItemScope:
        return ItemScope(self, token)

    def template_scope(self) -> ItemScope:
        return ItemScope(self, TEMPLATE_TOKEN)

    def item_factory(self) -> ItemFactory:
        return ItemFactory(self)

    def bound_children(self) -> List[Any]:
        if self.item_list is None:
            return []
        children: List[Any] = []
        for item in self.item_list:
            children.extend(item.fields)
        return children

    # ========== VALUES ==========

    def extract(self, raw: Any) -> Any:
        """Decode a JSON-encoded list/object; other values pass through."""
        if isinstance(raw, str):
            if not raw.strip():
                return []
            decoded = json.loads(raw)
            return decoded if isinstance(decoded, (list, dict)) else []
        if raw is None:
            return []
        return raw

    def serialize(self, items: List[Mapping[str, Any]]) -> str:
        return json.dumps([dict(item) for item in items])

    def render_head_title(self, data: Mapping[str, Any]) -> Optional[str]:
        if not self.head_title_template:
            return None
        title = self.head_title_template
        for key, value in data.items():
            title = title.replace('{' + str(key) + '}', '' if value is None else str(value))
        return title

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            'schema': [node.to_dict() for node in iter_schema_fields(self.schema_nodes)],
            'min_items': self.min_items_value,
            'max_items': self.max_items_value,
            'sortable': self.sortable_flag,
            'collapsible': self.collapsible_flag,
            'add_button_label': self.add_button_label_text,
            'head_title': self.head_title_template,
        })
        return data

    # ========== BINDING ==========

    def bind_for_display(self, container: Any, data: Mapping[str, Any], context: Optional['FormContext'] = None):
        bound = self.with_container(container)
        stored = data.get(self.key) if data else None
        bound.item_list = ItemList.load(bound, bound.extract(stored), context)
        bound.template_fields = ItemFactory(bound).make_template_fields()
        bound.set_value(bound.item_list.to_data())
        logger.debug(f"Bound {bound.state_path!r} with {len(bound.item_list)} item(s)")
        return bound

    def bind_as_template(self, container: Any):
        bound = self.mark_as_template().with_container(container)
        bound.item_list = None
        bound.template_fields = ItemFactory(bound).make_template_fields()
        return bound

    # ========== PERSISTENCE ==========

    def prepare_for_save(
        self,
        raw: Any,
        submission: Optional['Submission'] = None,
        context: Optional['FormContext'] = None,
        stored: Any = None,
    ) -> FieldPersistenceResult:
        if self.is_template:
            return FieldPersistenceResult.empty()

        result = RequestProcessor(self, context).process(raw, submission, stored)
        return FieldPersistenceResult.make(
            result.items,
            list(result.deferred_actions),
            meaningful=bool(result.items),
        )

    def nested_cleanup_actions(self, stored: Any, context: Optional['FormContext'] = None) -> List[Callable[[], None]]:
        """Cleanup for every stored item of this group (used when an enclosing item is removed)."""
        rows = self.extract(stored)
        if isinstance(rows, Mapping):
            rows = list(rows.values())
        id_key = get_config().item_id_key

        actions: List[Callable[[], None]] = []
        for index, row in enumerate(rows):
            if not isinstance(row, Mapping):
                continue
            token = str(row.get(id_key, index))
            if not is_valid_item_token(token):
                token = str(index)
            scope = self.item_scope(token)
            for node in iter_cleanup_fields(self.schema_nodes):
                actions.extend(node.with_container(scope).nested_cleanup_actions(row.get(node.key), context))
        return actions
