"""
State path (address) resolution for form nodes.

A state path is the dotted sequence of tokens locating a field's value inside
the stored/submitted data tree:

- Simple field:   'name'                     -> 'name'
- In a section:   'avatar' in 'profile'      -> 'profile.avatar'
- In a group:     'image' in item 'a1' of 'gallery' -> 'gallery.a1.image'
- Deeply nested:  'chapters.0.sections.1.image'

Paths are built compositionally, top-down: a node asks its container for a
child prefix and appends its own key. Nothing here parses HTML input names
post-hoc; the parsing helpers at the bottom exist only to translate between
dot notation and the bracket notation used by submitted form data.

All functions are pure. The resolver only relies on duck-typed attributes:

- node.key                  base key (never prefixed)
- node.explicit_state_path  explicit override or None
- node.container            container object or None
- container.child_state_path(item_token=None)
- scope.is_item_scope       marks the per-item container of a repeating group
"""

import hashlib
import logging
import re
from typing import Any, Iterator, List, Optional

from formstate.errors import AddressResolutionError

logger = logging.getLogger(__name__)

SEPARATOR = '.'

# Reserved item tokens. None of them can ever be a valid stable id
# (see is_valid_item_token), which is what keeps template and wildcard
# addresses disjoint from every real address.
TEMPLATE_TOKEN = '__TEMPLATE__'
CLIENT_ITEM_TOKEN = '__ITEM__'
WILDCARD_TOKEN = '*'
RESERVED_TOKENS = frozenset({TEMPLATE_TOKEN, CLIENT_ITEM_TOKEN, WILDCARD_TOKEN})

_ITEM_TOKEN_PATTERN = re.compile(r'^[A-Za-z0-9][A-Za-z0-9_-]*$')
_BRACKET_PATTERN = re.compile(r'\[(.*?)\]')
_ID_UNSAFE_PATTERN = re.compile(r'[^A-Za-z0-9_-]+')


# ========== PATH STRING HELPERS ==========

def split_path(path: Optional[str]) -> List[str]:
    """Split a dotted path into its non-empty segments."""
    if not path:
        return []
    return [segment for segment in path.split(SEPARATOR) if segment != '']


def compose_path(parent: Optional[str], name: str) -> str:
    """Compose a child path; an empty parent means root level."""
    if not parent:
        return name
    return f'{parent}{SEPARATOR}{name}'


def parent_path(path: str) -> Optional[str]:
    """All segments but the last, or None for a root-level path."""
    segments = split_path(path)
    if len(segments) <= 1:
        return None
    return SEPARATOR.join(segments[:-1])


def field_name(path: str) -> str:
    """Last segment of a path."""
    segments = split_path(path)
    return segments[-1] if segments else ''


def is_template_path(path: str) -> bool:
    """True if the path contains the template marker as a segment."""
    return TEMPLATE_TOKEN in split_path(path)


def is_valid_item_token(token: Any) -> bool:
    """Whether a value can serve as an item token (stable id) in an address.

    Valid tokens are non-empty strings of letters, digits, '_' and '-' that
    start with a letter or digit. Every reserved token fails this check.
    """
    return isinstance(token, str) and token not in RESERVED_TOKENS and bool(_ITEM_TOKEN_PATTERN.match(token))


def to_dot_notation(value: str) -> str:
    """Normalize bracket or mixed notation to dot notation.

    'gallery[2][photo]' -> 'gallery.2.photo'
    'gallery[2].photo'  -> 'gallery.2.photo'
    """
    if not value:
        return ''
    normalized = _BRACKET_PATTERN.sub(lambda m: f'{SEPARATOR}{m.group(1)}', value)
    normalized = re.sub(r'\.+', SEPARATOR, normalized)
    return normalized.strip(SEPARATOR)


def name_from_state_path(path: str) -> str:
    """Convert a state path to the bracket input name ('a.0.b' -> 'a[0][b]')."""
    segments = split_path(to_dot_notation(path))
    if not segments:
        return path
    first, rest = segments[0], segments[1:]
    return first + ''.join(f'[{segment}]' for segment in rest)


def id_from_state_path(path: str) -> str:
    """Convert a state path to an HTML id ('a.0.b' -> 'a-0-b')."""
    segments = split_path(to_dot_notation(path))
    raw = '-'.join(segments) if segments else path
    sanitized = _ID_UNSAFE_PATTERN.sub('-', raw).strip('-')
    if sanitized:
        return sanitized
    # Deterministic fallback so repeated renders agree
    return 'field-' + hashlib.md5(path.encode('utf-8')).hexdigest()[:8]


def meta_key_from_state_path(path: str) -> str:
    """Key under which side-channel inputs for a field are submitted.

    'gallery.0.image' -> 'gallery_0_image'
    """
    return path.replace(SEPARATOR, '_').lower()


# ========== CONTAINER CHAIN ==========

def iter_containers(node: Any) -> Iterator[Any]:
    """Yield the container chain of a node, innermost first.

    Raises:
        AddressResolutionError: If the chain is cyclic.
    """
    seen = {id(node)}
    container = getattr(node, 'container', None)
    while container is not None:
        if id(container) in seen:
            raise AddressResolutionError(
                f"Cyclic container chain detected at {type(container).__name__} "
                f"while resolving '{getattr(node, 'key', node)!r}'"
            )
        seen.add(id(container))
        yield container
        container = getattr(container, 'container', None)


def nearest_item_scope(node: Any) -> Optional[Any]:
    """Closest repeating-group item scope above a node, or None."""
    for container in iter_containers(node):
        if getattr(container, 'is_item_scope', False):
            return container
    return None


def nearest_repeating_group(node: Any) -> Optional[Any]:
    """Closest repeating group above a node, reached through an item scope or directly."""
    for container in iter_containers(node):
        if getattr(container, 'is_item_scope', False):
            return container.group
        if getattr(container, 'is_repeating_group', False):
            return container
    return None


def is_inside_repeating_group(node: Any) -> bool:
    return nearest_item_scope(node) is not None


# ========== RESOLVER ==========

def resolve_as_child_prefix(container: Any, item_token: Optional[str] = None) -> str:
    """Address prefix a container hands to the children bound to it.

    Item scopes return '<group address>.<token>'; every other container returns
    its own address.

    Args:
        container: Container object
        item_token: When given, replaces every item token contributed by an
            ancestor repeating group (template/wildcard rendering).

    Raises:
        AddressResolutionError: If the object cannot act as a container.
    """
    child_state_path = getattr(container, 'child_state_path', None)
    if not callable(child_state_path):
        raise AddressResolutionError(
            f"{type(container).__name__} is not a container (no child_state_path())"
        )
    return child_state_path(item_token)


def resolve_state_path(node: Any, item_token: Optional[str] = None) -> str:
    """Canonical address of a node.

    Resolution order:
    1. Explicit state path override -> returned verbatim
    2. No container -> node.key
    3. Otherwise -> container child prefix + '.' + node.key

    Args:
        node: Field node (or anything exposing key/explicit_state_path/container)
        item_token: Optional replacement for ancestor item tokens

    Returns:
        Dotted state path (never empty for a well-formed node)
    """
    explicit = getattr(node, 'explicit_state_path', None)
    if explicit is not None:
        return explicit

    container = getattr(node, 'container', None)
    if container is None:
        return node.key

    # Walk once to fail fast on cycles before recursing through the chain
    for _ in iter_containers(node):
        pass

    prefix = resolve_as_child_prefix(container, item_token)
    return compose_path(prefix, node.key)


def template_safe_state_path(node: Any) -> str:
    """Address safe to expose for a template (stencil) node.

    For a template node with a repeating-group ancestor this is the nearest
    group's address, with its own ancestor tokens replaced, followed by the
    template marker - e.g. 'items.__TEMPLATE__' - no matter which real item
    tokens the ancestors currently hold. Otherwise identical to
    resolve_state_path().
    """
    if getattr(node, 'is_template', False):
        group = nearest_repeating_group(node)
        if group is not None:
            group_path = resolve_state_path(group, TEMPLATE_TOKEN)
            return compose_path(group_path, TEMPLATE_TOKEN)
    return resolve_state_path(node)


def wildcard_state_path(node: Any) -> str:
    """Address with every ancestor item token replaced by '*' (rule keys)."""
    return resolve_state_path(node, WILDCARD_TOKEN)


def shorten_name(base: str, name: str, max_length: int) -> str:
    """Cap a derived name at max_length using a stable md5 suffix."""
    if len(name) <= max_length:
        return name
    digest = hashlib.md5(name.encode('utf-8')).hexdigest()[:12]
    shortened = f'{base}{SEPARATOR}{digest}'
    logger.debug(f"Shortened derived name {name!r} -> {shortened!r}")
    return shortened
