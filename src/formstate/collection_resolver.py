"""
Attachment collection naming.

Resolution order for resolve_collection_name(field):
1. Collection override on the field instance -> verbatim
2. Inside a repeating group -> '<base>.<parent path of the field's address>'
   (e.g. 'image' at 'gallery.a1.image' -> 'image.gallery.a1')
3. Root -> declared collection, else the configured default

``base`` is the declared collection name, or the field key when none is
declared. Names longer than the configured maximum are shortened to
'<base>.<md5[:12]>'. Because the parent path always contains the item's
stable token, two items of one group never share a collection.
"""

import logging
from typing import Any, Optional

from formstate.config import FormStateConfig, get_config
from formstate.errors import CollectionResolutionError
from formstate.state_path import (
    CLIENT_ITEM_TOKEN,
    is_template_path,
    nearest_item_scope,
    parent_path,
    resolve_state_path,
    shorten_name,
    split_path,
)

logger = logging.getLogger(__name__)


def resolve_collection_name(field: Any, config: Optional[FormStateConfig] = None) -> str:
    """Derive the attachment collection name for a bound field.

    Args:
        field: Attachment-bearing field (``collection_override``,
            ``declared_collection`` and ``key`` attributes are read)
        config: Config to use; defaults to the active thread config

    Raises:
        CollectionResolutionError: If the field is template-marked.
    """
    if getattr(field, 'is_template', False):
        raise CollectionResolutionError(
            f"Cannot resolve a collection for template field {getattr(field, 'key', field)!r}"
        )

    config = config or get_config()

    override = getattr(field, 'collection_override', None)
    if override:
        return override

    declared = getattr(field, 'declared_collection', None)

    if nearest_item_scope(field) is not None:
        base = declared or field.key
        prefix = parent_path(resolve_state_path(field))
        name = f'{base}.{prefix}' if prefix else base
        if is_template_path(name) or CLIENT_ITEM_TOKEN in split_path(name):
            logger.warning(f"Collection name {name!r} contains a placeholder token")
    else:
        base = declared or config.default_collection
        name = base

    resolved = shorten_name(base, name, config.max_collection_length)
    logger.debug(f"Resolved collection {resolved!r} for {field!r}")
    return resolved
