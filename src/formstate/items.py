"""
Items of a repeating group: scopes, stable identifiers, factory and list.

Every item carries a stable identifier (``_id`` in its data) that doubles as
its address token: 'gallery.a1b2c3d4e5f6.image'. The identifier is assigned
once, never changes on reorder and is never handed out twice within one
group instance, so addresses (and the attachment collections derived from
them) stay attached to the same item for its whole life.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Set, Tuple, TYPE_CHECKING

from formstate.config import get_config
from formstate.errors import StructuralError
from formstate.fields import iter_cleanup_fields, iter_schema_fields
from formstate.state_path import TEMPLATE_TOKEN, compose_path, is_valid_item_token

if TYPE_CHECKING:
    from formstate.context import FormContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ItemScope:
    """Container the fields of one item are bound to.

    Hands out '<group address>.<token>' as child prefix. With ``item_token``
    given (template/wildcard rendering) both the group's ancestor tokens and
    this scope's token are replaced.
    """
    group: Any
    token: str

    is_item_scope = True

    @property
    def container(self) -> Any:
        return self.group

    @property
    def is_template(self) -> bool:
        return self.token == TEMPLATE_TOKEN

    def child_state_path(self, item_token: Optional[str] = None) -> str:
        return compose_path(self.group.get_state_path(item_token), item_token or self.token)


@dataclass
class Item:
    """One bound item of a repeating group."""
    index: int
    stable_id: str
    data: Dict[str, Any]
    fields: List[Any]
    scope: ItemScope

    @property
    def state_path(self) -> str:
        return self.scope.child_state_path()

    def field(self, key: str) -> Any:
        """Bound field by key (looks through layout wrappers)."""
        for node in iter_schema_fields(self.fields):
            if node.key == key:
                return node
        raise KeyError(f"Item {self.stable_id!r} has no field {key!r}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'index': self.index,
            'stable_id': self.stable_id,
            'state_path': self.state_path,
            'data': dict(self.data),
        }


class ItemIdRegistry:
    """Request-scoped record of issued item identifiers, per group address.

    A FormContext may walk the same group several times (display, then save).
    An identifier stays claimable by its item while active; retiring one
    (item removed or pruned) keeps it issued so it is never handed out again.
    """

    def __init__(self, id_length: Optional[int] = None):
        self.id_length = id_length
        self._issued: Dict[str, Set[str]] = {}
        self._active: Dict[str, Set[str]] = {}

    def _length(self) -> int:
        return self.id_length or get_config().stable_id_length

    def is_issued(self, scope_key: str, token: str) -> bool:
        return token in self._issued.get(scope_key, set())

    def is_retired(self, scope_key: str, token: str) -> bool:
        return self.is_issued(scope_key, token) and token not in self._active.get(scope_key, set())

    def active(self, scope_key: str) -> Set[str]:
        return set(self._active.get(scope_key, set()))

    def _activate(self, scope_key: str, token: str) -> None:
        self._issued.setdefault(scope_key, set()).add(token)
        self._active.setdefault(scope_key, set()).add(token)

    def claim(self, scope_key: str, token: str) -> bool:
        """Record a submitted identifier. False if invalid or retired.

        Claiming an identifier that is still active succeeds again, so a
        second pass over the same items in one request keeps their ids.
        """
        if not is_valid_item_token(token) or self.is_retired(scope_key, token):
            return False
        self._activate(scope_key, token)
        return True

    def adopt(self, scope_key: str, token: str) -> bool:
        """Record a stored identifier. False if invalid.

        Stored rows own their identifier even once retired in this request;
        a retired one is recorded but stays retired.
        """
        if not is_valid_item_token(token):
            return False
        if not self.is_issued(scope_key, token):
            self._activate(scope_key, token)
        return True

    def mint(self, scope_key: str) -> str:
        """Issue a fresh identifier never seen in this scope."""
        issued = self._issued.setdefault(scope_key, set())
        while True:
            token = uuid.uuid4().hex[:self._length()]
            if token not in issued:
                break
        self._activate(scope_key, token)
        logger.debug(f"Minted item id {token!r} for {scope_key!r}")
        return token

    def retire(self, scope_key: str, token: str) -> None:
        """Mark an identifier inactive. It stays issued."""
        self._active.get(scope_key, set()).discard(token)


def assign_stable_ids(
    rows: List[Mapping[str, Any]],
    registry: ItemIdRegistry,
    scope_key: str,
) -> List[Tuple[str, Dict[str, Any]]]:
    """Pair stored rows with stable identifiers, recording them in ``registry``.

    Rows keep their stored id. Rows that predate stable ids (or hold an
    invalid id, or one already used by an earlier row) get their load index
    if unused, else a minted id.
    """
    id_key = get_config().item_id_key
    assigned: List[Tuple[str, Dict[str, Any]]] = []
    used: Set[str] = set()
    for index, row in enumerate(rows):
        data = dict(row) if isinstance(row, Mapping) else {}
        stored_id = data.get(id_key)
        if stored_id is not None and not isinstance(stored_id, str):
            stored_id = str(stored_id)

        if stored_id is not None and stored_id not in used and registry.adopt(scope_key, stored_id):
            token = stored_id
        else:
            if stored_id is not None:
                logger.warning(f"Ignoring invalid or duplicate stored item id {stored_id!r} in {scope_key!r}")
            legacy = str(index)
            if legacy not in used and registry.adopt(scope_key, legacy):
                token = legacy
            else:
                token = registry.mint(scope_key)

        used.add(token)
        data[id_key] = token
        assigned.append((token, data))
    return assigned


class ItemFactory:
    """Builds bound items and template fields for a repeating group."""

    def __init__(self, group: Any, registry: Optional[ItemIdRegistry] = None):
        self.group = group
        self.registry = registry if registry is not None else ItemIdRegistry()

    def resolve_item_id(self, data: Mapping[str, Any], scope_key: Optional[str] = None) -> str:
        """Supplied id if valid, else a freshly minted one."""
        scope_key = scope_key if scope_key is not None else self.group.state_path
        stored_id = data.get(get_config().item_id_key)
        if stored_id is not None and is_valid_item_token(str(stored_id)):
            self.registry.claim(scope_key, str(stored_id))
            return str(stored_id)
        return self.registry.mint(scope_key)

    def build(
        self,
        index: int,
        raw_item_data: Mapping[str, Any],
        container: Optional[Any] = None,
        context: Optional['FormContext'] = None,
    ) -> Item:
        """Clone the child schema into one bound item.

        Args:
            index: Display position
            raw_item_data: Values keyed by unprefixed field key (plus ``_id``;
                a fresh id is minted when it is missing)
            container: Group instance to bind the item to (defaults to the
                factory's group)
            context: Request context forwarded to field display hooks
        """
        group = container if container is not None else self.group
        data = dict(raw_item_data or {})
        stable_id = self.resolve_item_id(data, group.state_path)
        data[get_config().item_id_key] = stable_id

        scope = group.item_scope(stable_id)
        fields = [node.bind_for_display(scope, data, context) for node in group.get_child_schema()]
        return Item(index=index, stable_id=stable_id, data=data, fields=fields, scope=scope)

    def make_template_fields(self) -> List[Any]:
        """Template clones of the child schema bound to the template scope."""
        scope = self.group.template_scope()
        return [node.bind_as_template(scope) for node in self.group.get_child_schema()]


class ItemList:
    """Ordered, editable items of one bound repeating group."""

    def __init__(self, group: Any, context: Optional['FormContext'] = None):
        self.group = group
        self.context = context
        self.registry = context.id_registry if context is not None else ItemIdRegistry()
        self.factory = ItemFactory(group, self.registry)
        self._items: List[Item] = []

    @classmethod
    def load(cls, group: Any, rows: Any, context: Optional['FormContext'] = None) -> 'ItemList':
        """Build items from stored rows (list, or mapping of rows)."""
        item_list = cls(group, context)
        if isinstance(rows, Mapping):
            rows = list(rows.values())
        rows = list(rows or [])

        for index, (token, data) in enumerate(assign_stable_ids(rows, item_list.registry, item_list.scope_key)):
            item_list._items.append(item_list.factory.build(index, data, group, context))
        return item_list

    @property
    def scope_key(self) -> str:
        return self.group.state_path

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Item]:
        return iter(self._items)

    @property
    def items(self) -> List[Item]:
        return list(self._items)

    @property
    def stable_ids(self) -> List[str]:
        return [item.stable_id for item in self._items]

    def get(self, stable_id: str) -> Item:
        for item in self._items:
            if item.stable_id == stable_id:
                return item
        raise KeyError(f"No item {stable_id!r} in {self.scope_key!r}")

    def _reindex(self) -> None:
        for position, item in enumerate(self._items):
            item.index = position

    def add(self, data: Optional[Mapping[str, Any]] = None) -> Item:
        """Append a new item with a freshly minted stable id.

        Raises:
            StructuralError: If the group already holds max_items items.
        """
        max_items = self.group.max_items_value
        if max_items is not None and len(self._items) >= max_items:
            raise StructuralError(f"Cannot add item to {self.scope_key!r}: max_items={max_items} reached")

        token = self.registry.mint(self.scope_key)
        item_data = dict(data or {})
        item_data[get_config().item_id_key] = token
        item = self.factory.build(len(self._items), item_data, self.group, self.context)
        self._items.append(item)
        logger.debug(f"Added item {token!r} to {self.scope_key!r}")
        return item

    def remove(self, stable_id: str) -> Item:
        """Remove an item and queue cleanup of the resources it owns.

        Raises:
            KeyError: Unknown stable id.
            StructuralError: If removal would go below min_items.
        """
        item = self.get(stable_id)
        min_items = self.group.min_items_value
        if min_items is not None and len(self._items) <= min_items:
            raise StructuralError(f"Cannot remove item from {self.scope_key!r}: min_items={min_items} reached")

        self._items.remove(item)
        self.registry.retire(self.scope_key, stable_id)
        self._reindex()
        self._queue_cleanup(item)
        logger.debug(f"Removed item {stable_id!r} from {self.scope_key!r}")
        return item

    def _queue_cleanup(self, item: Item) -> None:
        context = self.context
        if context is None or not context.has_record:
            return
        for node in iter_cleanup_fields(self.group.get_child_schema()):
            bound = node.with_container(item.scope)
            for action in bound.nested_cleanup_actions(item.data.get(node.key), context):
                context.coordinator.add_cleanup_action(action)
        context.mark_released(self.scope_key, item.stable_id)

    def move(self, stable_id: str, new_index: int) -> None:
        """Move an item to ``new_index``; identifiers and addresses are unchanged."""
        item = self.get(stable_id)
        if not 0 <= new_index < len(self._items):
            raise IndexError(f"Index {new_index} out of range for {len(self._items)} items")
        self._items.remove(item)
        self._items.insert(new_index, item)
        self._reindex()

    def reorder(self, stable_ids: List[str]) -> None:
        """Reorder items to match ``stable_ids`` (must name every item exactly once)."""
        if sorted(stable_ids) != sorted(self.stable_ids):
            raise ValueError(f"Reorder must list every item of {self.scope_key!r} exactly once")
        by_id = {item.stable_id: item for item in self._items}
        self._items = [by_id[stable_id] for stable_id in stable_ids]
        self._reindex()

    def update(self, stable_id: str, key: str, value: Any) -> None:
        """Set one value of an item (data and bound field)."""
        item = self.get(stable_id)
        if key == get_config().item_id_key:
            raise ValueError("Stable item ids cannot be changed")
        bound = item.field(key)
        bound.set_value(value)
        item.data[key] = value

    def to_data(self) -> List[Dict[str, Any]]:
        """Storable rows in display order."""
        return [dict(item.data) for item in self._items]
