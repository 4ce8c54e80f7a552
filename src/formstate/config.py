"""
Thread-local configuration for formstate.

Holds the tunable knobs of the address/collection machinery: the fallback
collection name, collection-name length cap, stable id length, the key under
which an item's stable identifier is stored, and the names of the attachment
side-channel inputs.

The reserved tokens (separator, template token, wildcard) are NOT configurable;
they live in formstate.state_path because the non-collision guarantees depend
on them.

Default behavior: every thread starts with DEFAULT_CONFIG.
Explicit override: set_config() for the current thread, or use_config() for a
scoped override (tests, multi-tenant workers).
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Any, Generator


@dataclass(frozen=True)
class FormStateConfig:
    """Immutable configuration values.

    Attributes:
        default_collection: Collection name for root attachment fields that
            declare no collection of their own.
        max_collection_length: Longer derived names are shortened to
            ``<base>.<md5[:12]>``.
        stable_id_length: Length of freshly minted item identifiers.
        item_id_key: Key holding the stable identifier inside item data.
        uploaded_key: Side-channel input listing newly uploaded attachment ids.
        deleted_key: Side-channel input listing attachment ids to delete.
        order_key: Side-channel input listing attachment ids in display order.
        props_key: Side-channel input with per-attachment property overrides.
    """
    default_collection: str = "default"
    max_collection_length: int = 120
    stable_id_length: int = 12
    item_id_key: str = "_id"
    uploaded_key: str = "__attachments_uploaded"
    deleted_key: str = "__attachments_deleted"
    order_key: str = "__attachments_order"
    props_key: str = "__attachments_props"

    def __post_init__(self):
        if not self.default_collection:
            raise ValueError("default_collection must be a non-empty string")
        if self.max_collection_length < 16:
            raise ValueError(f"max_collection_length too small: {self.max_collection_length}")
        if not 8 <= self.stable_id_length <= 32:
            raise ValueError(f"stable_id_length must be between 8 and 32, got {self.stable_id_length}")
        if not self.item_id_key:
            raise ValueError("item_id_key must be a non-empty string")

    def with_overrides(self, **overrides: Any) -> 'FormStateConfig':
        """Return a copy with the given fields replaced."""
        return replace(self, **overrides)


DEFAULT_CONFIG = FormStateConfig()

# Per-thread storage: each worker thread sees its own active config
_config_context = threading.local()


def set_config(config: FormStateConfig) -> None:
    """Set the active config for the current thread.

    Args:
        config: The config instance to activate
    """
    if not isinstance(config, FormStateConfig):
        raise TypeError(f"Expected FormStateConfig, got {type(config).__name__}")
    _config_context.value = config


def get_config() -> FormStateConfig:
    """Get the active config for the current thread (DEFAULT_CONFIG if unset)."""
    return getattr(_config_context, 'value', None) or DEFAULT_CONFIG


def reset_config() -> None:
    """Drop the current thread's override so DEFAULT_CONFIG applies again."""
    if hasattr(_config_context, 'value'):
        del _config_context.value


@contextmanager
def use_config(config: FormStateConfig = None, **overrides: Any) -> Generator[FormStateConfig, None, None]:
    """Temporarily activate a config for the current thread.

    Usage:
        with use_config(default_collection="media"):
            resolve_collection_name(field)  # -> "media" at root

    Args:
        config: Config to activate. Defaults to the currently active config.
        **overrides: Field overrides applied on top of ``config``.
    """
    previous = getattr(_config_context, 'value', None)
    active = (config or get_config()).with_overrides(**overrides) if overrides else (config or get_config())
    set_config(active)
    try:
        yield active
    finally:
        if previous is None:
            reset_config()
        else:
            _config_context.value = previous
