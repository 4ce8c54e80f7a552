"""
Capabilities a form node can hold, independent of its field type.

Three small mixins, each separately testable:

- HasContainer:  knows the container it is bound to
- HasStatePath:  resolves its address and acts as a container for children
- IsTemplate:    marks a node as a non-persisted UI stencil

Every binding operation returns a NEW instance (shallow copy + hook).
Schema declarations are never mutated by binding, so one declaration can be
bound into any number of items, templates and requests.
"""

import copy
from typing import Any, Optional, Protocol, runtime_checkable

from formstate.state_path import (
    resolve_state_path,
    template_safe_state_path,
    wildcard_state_path,
)


@runtime_checkable
class Container(Protocol):
    """Anything that can hand an address prefix to the nodes bound to it."""

    def child_state_path(self, item_token: Optional[str] = None) -> str:
        ...


class Clonable:
    """Shallow-copy cloning with a hook for copying mutable per-instance config."""

    def _clone(self):
        clone = copy.copy(self)
        clone._after_clone()
        return clone

    def _after_clone(self) -> None:
        """Override to deep-copy mutable members that must not be shared."""


class HasContainer(Clonable):
    """Parent container awareness."""

    container: Optional[Any] = None

    def with_container(self, container: Optional[Any]):
        """Return a clone bound to ``container`` (None unbinds)."""
        clone = self._clone()
        clone.container = container
        return clone


class HasStatePath(Clonable):
    """Compositional address building.

    Resolution order (see formstate.state_path.resolve_state_path):
    1. Explicit override set via with_state_path()
    2. Container child prefix + own key
    3. Own key at root
    """

    explicit_state_path: Optional[str] = None

    def with_state_path(self, path: Optional[str]):
        """Return a clone whose address is exactly ``path`` (None clears the override)."""
        clone = self._clone()
        clone.explicit_state_path = path
        return clone

    @property
    def state_path(self) -> str:
        return resolve_state_path(self)

    def get_state_path(self, item_token: Optional[str] = None) -> str:
        return resolve_state_path(self, item_token)

    def child_state_path(self, item_token: Optional[str] = None) -> str:
        """Prefix for children bound to this node: its own address."""
        return resolve_state_path(self, item_token)

    @property
    def wildcard_state_path(self) -> str:
        return wildcard_state_path(self)


class IsTemplate(Clonable):
    """Template (stencil) marker.

    Template clones are rendered so the client can stamp out new items, but
    they never own stored data or attachment collections.
    """

    is_template: bool = False

    def mark_as_template(self):
        """Return a clone flagged as template."""
        clone = self._clone()
        clone.is_template = True
        return clone

    @property
    def template_safe_state_path(self) -> str:
        return template_safe_state_path(self)
