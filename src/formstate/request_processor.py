"""
Reconciles a repeating group's submitted items with its stored items.

For each submitted item:
- template stencils ('__TEMPLATE__') are ignored
- a missing/invalid/duplicate ``_id`` gets a server-minted id; the client's
  address is aliased so side-channel inputs are still found
- every child field prepares its value (recursing into nested groups)
- an item with no meaningful value is pruned
- a stored item already removed earlier in the request (ItemList.remove) is
  skipped

Stored items absent from the result (removed or pruned) are released: on the
edit flow their fields' cleanup actions are queued on the coordinator, once
per item per request.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Set, Tuple, TYPE_CHECKING

from formstate.config import get_config
from formstate.fields import iter_cleanup_fields, iter_schema_fields
from formstate.items import ItemIdRegistry, assign_stable_ids
from formstate.state_path import CLIENT_ITEM_TOKEN, TEMPLATE_TOKEN, compose_path
from formstate.submission import normalize_items

if TYPE_CHECKING:
    from formstate.context import FormContext
    from formstate.submission import Submission

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessResult:
    """Outcome of processing one repeating group.

    Attributes:
        items: Storable rows in submitted order, each carrying its ``_id``
        deferred_actions: Deferred actions collected from kept items
        removed: Stable ids of stored items that were removed or pruned
    """
    items: List[Dict[str, Any]]
    deferred_actions: Tuple[Callable[[Any], None], ...]
    removed: Tuple[str, ...]


class RequestProcessor:
    """Processes one bound repeating group against a submission."""

    def __init__(self, group: Any, context: Optional['FormContext'] = None):
        self.group = group
        self.context = context
        self.registry = context.id_registry if context is not None else ItemIdRegistry()

    @property
    def scope_key(self) -> str:
        return self.group.state_path

    def _stored_rows(self, stored: Any) -> Dict[str, Dict[str, Any]]:
        rows = self.group.extract(stored)
        if isinstance(rows, Mapping):
            rows = list(rows.values())
        # Stored rows claim their ids first so minted ids never collide with them
        return dict(assign_stable_ids(list(rows), self.registry, self.scope_key))

    def _resolve_token(self, submitted_key: str, data: Mapping[str, Any], stored: Dict[str, Any], seen: Set[str]) -> str:
        id_key = get_config().item_id_key
        candidate = data.get(id_key)
        if candidate is not None and not isinstance(candidate, str):
            candidate = str(candidate)

        if candidate is not None:
            if candidate in seen:
                logger.warning(f"Duplicate item id {candidate!r} in {self.scope_key!r}")
            elif candidate in stored or self.registry.claim(self.scope_key, candidate):
                return candidate
            else:
                logger.warning(f"Rejected item id {candidate!r} for {self.scope_key!r}")

        token = self.registry.mint(self.scope_key)
        logger.debug(f"Item {submitted_key!r} of {self.scope_key!r} assigned id {token!r}")
        return token

    def _is_released(self, token: str) -> bool:
        return self.context is not None and self.context.is_released(self.scope_key, token)

    def process(
        self,
        raw: Any,
        submission: Optional['Submission'] = None,
        stored: Any = None,
    ) -> ProcessResult:
        id_key = get_config().item_id_key
        stored_rows = self._stored_rows(stored)
        schema = list(iter_schema_fields(self.group.get_child_schema()))

        rows: List[Dict[str, Any]] = []
        deferred: List[Callable[[Any], None]] = []
        seen: Set[str] = set()
        kept: Set[str] = set()

        for submitted_key, data in normalize_items(self.group.extract(raw)):
            if submitted_key in (TEMPLATE_TOKEN, CLIENT_ITEM_TOKEN):
                logger.debug(f"Ignoring stencil item {submitted_key!r} in {self.scope_key!r}")
                continue

            token = self._resolve_token(submitted_key, data, stored_rows, seen)
            seen.add(token)
            if token in stored_rows and self._is_released(token):
                logger.debug(f"Skipping item {token!r} of {self.scope_key!r}: already removed")
                continue

            if submission is not None and submitted_key != token:
                submission.add_alias(
                    compose_path(self.scope_key, token),
                    compose_path(self.scope_key, submitted_key),
                )

            scope = self.group.item_scope(token)
            stored_row = stored_rows.get(token, {})
            row: Dict[str, Any] = {id_key: token}
            item_deferred: List[Callable[[Any], None]] = []
            meaningful = False

            for node in schema:
                bound = node.with_container(scope)
                result = bound.prepare_for_save(data.get(node.key), submission, self.context, stored_row.get(node.key))
                item_deferred.extend(result.deferred_actions)
                if result.is_meaningful:
                    meaningful = True
                if result.should_persist:
                    row[node.key] = result.value

            if not meaningful:
                logger.debug(f"Pruned empty item {token!r} from {self.scope_key!r}")
                self.registry.retire(self.scope_key, token)
                continue

            kept.add(token)
            rows.append(row)
            deferred.extend(item_deferred)

        removed = tuple(token for token in stored_rows if token not in kept)
        for token in removed:
            self.registry.retire(self.scope_key, token)
            if self._is_released(token):
                continue
            self._queue_cleanup(token, stored_rows[token])

        logger.debug(f"Processed {self.scope_key!r}: kept {len(rows)}, removed {len(removed)}")
        return ProcessResult(items=rows, deferred_actions=tuple(deferred), removed=removed)

    def _queue_cleanup(self, token: str, stored_row: Mapping[str, Any]) -> None:
        context = self.context
        if context is None or not context.has_record:
            return
        scope = self.group.item_scope(token)
        for node in iter_cleanup_fields(self.group.get_child_schema()):
            bound = node.with_container(scope)
            for action in bound.nested_cleanup_actions(stored_row.get(node.key), context):
                context.coordinator.add_cleanup_action(action)
        context.mark_released(self.scope_key, token)
