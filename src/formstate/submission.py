"""
Submitted form data: parsing, item normalization and address aliasing.

Browsers submit flat pairs with bracket keys ('gallery[2][photo]', 'ids[]');
API clients may send dot keys or already-nested maps. parse_input() turns any
of these into nested dicts so every consumer reads one shape.

Aliases: a new item submitted under a client key ('gallery.new1') receives a
server-minted stable id ('gallery.9f2c...'). Side-channel inputs (attachment
uploads etc.) are still keyed by the client's address, so the processor
records 'gallery.9f2c...' -> 'gallery.new1' and lookups try both.
"""

import json
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from formstate.state_path import SEPARATOR, split_path, to_dot_notation

logger = logging.getLogger(__name__)

_APPEND_SEGMENT = ''


def _assign(target: Dict[str, Any], segments: List[str], value: Any) -> None:
    node = target
    for position, segment in enumerate(segments):
        last = position == len(segments) - 1
        next_is_append = not last and segments[position + 1] == _APPEND_SEGMENT

        if last:
            if isinstance(node.get(segment), dict) and isinstance(value, dict):
                node[segment].update(value)
            else:
                node[segment] = value
            return

        if next_is_append and position + 1 == len(segments) - 1:
            existing = node.get(segment)
            if not isinstance(existing, list):
                existing = [] if existing is None else [existing]
                node[segment] = existing
            existing.extend(value if isinstance(value, list) else [value])
            return

        child = node.get(segment)
        if not isinstance(child, dict):
            child = {}
            node[segment] = child
        node = child


def _split_key(key: str) -> List[str]:
    """'a[b][]' -> ['a', 'b', ''], 'a.b' -> ['a', 'b']."""
    append = key.endswith('[]')
    if append:
        key = key[:-2]
    segments = split_path(to_dot_notation(key))
    if append:
        segments.append(_APPEND_SEGMENT)
    return segments


def parse_input(raw: Union[Mapping[str, Any], Iterable[Tuple[str, Any]], None]) -> Dict[str, Any]:
    """Normalize submitted pairs or maps into nested dicts.

    Args:
        raw: Mapping (flat, nested or mixed) or iterable of (key, value) pairs.
            Repeated 'key[]' pairs append to a list.

    Returns:
        Nested dict; nested mapping values are normalized recursively.
    """
    if raw is None:
        return {}
    pairs = raw.items() if isinstance(raw, Mapping) else raw

    parsed: Dict[str, Any] = {}
    for key, value in pairs:
        if isinstance(value, Mapping):
            value = parse_input(value)
        segments = _split_key(str(key))
        if not segments or segments == [_APPEND_SEGMENT]:
            continue
        _assign(parsed, segments, value)
    return parsed


def normalize_items(raw: Any) -> List[Tuple[str, Dict[str, Any]]]:
    """Turn a group's raw value into ordered (submitted_key, item_data) pairs.

    Lists are keyed by position; dicts keep their keys (client tokens or
    stable ids) in submission order. Non-mapping entries are dropped.
    """
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = json.loads(raw) if raw.strip() else []
    if isinstance(raw, Mapping):
        entries = [(str(key), value) for key, value in raw.items()]
    elif isinstance(raw, (list, tuple)):
        entries = [(str(index), value) for index, value in enumerate(raw)]
    else:
        logger.warning(f"Ignoring repeating group value of type {type(raw).__name__}")
        return []

    items = []
    for key, value in entries:
        if isinstance(value, Mapping):
            items.append((key, dict(value)))
        else:
            logger.debug(f"Dropping non-mapping item {key!r}")
    return items


def parse_id_list(raw: Any) -> List[int]:
    """Comma-separated string or list of ids -> positive ints, de-duplicated, order kept."""
    if raw is None:
        return []
    if isinstance(raw, str):
        candidates: Iterable[Any] = raw.split(',')
    elif isinstance(raw, (list, tuple)):
        candidates = raw
    elif isinstance(raw, Mapping):
        candidates = raw.values()
    else:
        candidates = [raw]

    ids: List[int] = []
    for candidate in candidates:
        if isinstance(candidate, bool):
            continue
        text = str(candidate).strip()
        if not text.isdigit():
            continue
        value = int(text)
        if value > 0 and value not in ids:
            ids.append(value)
    return ids


def normalize_props(raw: Any) -> Dict[int, Dict[str, Any]]:
    """Per-attachment property overrides: id -> dict (JSON strings decoded).

    Entries with an invalid id or undecodable props are dropped with a warning.
    """
    if isinstance(raw, str):
        raw = json.loads(raw) if raw.strip() else {}
    if not isinstance(raw, Mapping):
        return {}

    props: Dict[int, Dict[str, Any]] = {}
    for key, value in raw.items():
        ids = parse_id_list(str(key))
        if not ids:
            logger.warning(f"Ignoring props for invalid attachment id {key!r}")
            continue
        if isinstance(value, str):
            try:
                value = json.loads(value) if value.strip() else {}
            except json.JSONDecodeError:
                logger.warning(f"Ignoring undecodable props for attachment {key!r}")
                continue
        if isinstance(value, Mapping):
            props[ids[0]] = dict(value)
    return props


class Submission:
    """Parsed submitted data plus address aliases."""

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        self.data: Dict[str, Any] = data or {}
        self._aliases: Dict[str, str] = {}

    @classmethod
    def from_input(cls, raw: Any) -> 'Submission':
        return cls(parse_input(raw))

    def get(self, path: str, default: Any = None) -> Any:
        """Value at a dotted path (lists indexed by position), or ``default``."""
        node: Any = self.data
        for segment in split_path(path):
            if isinstance(node, Mapping) and segment in node:
                node = node[segment]
            elif isinstance(node, list) and segment.isdigit() and int(segment) < len(node):
                node = node[int(segment)]
            else:
                return default
        return node

    def side_channel(self, channel: str, meta_key: str) -> Any:
        """Side-channel value submitted as '<channel>[<meta_key>]'."""
        bucket = self.data.get(channel)
        if isinstance(bucket, Mapping):
            return bucket.get(meta_key)
        return None

    def add_alias(self, canonical_prefix: str, submitted_prefix: str) -> None:
        """Map a server-assigned address prefix to the prefix the client used."""
        if canonical_prefix == submitted_prefix:
            return
        self._aliases[canonical_prefix] = submitted_prefix
        logger.debug(f"Aliased {canonical_prefix!r} -> {submitted_prefix!r}")

    @property
    def aliases(self) -> Dict[str, str]:
        return dict(self._aliases)

    def candidate_paths(self, path: str) -> List[str]:
        """``path`` followed by every aliased spelling of it (nested aliases compose)."""
        candidates = [path]
        ordered = sorted(self._aliases.items(), key=lambda item: len(item[0]), reverse=True)
        position = 0
        while position < len(candidates):
            current = candidates[position]
            for prefix, replacement in ordered:
                if current == prefix or current.startswith(prefix + SEPARATOR):
                    aliased = replacement + current[len(prefix):]
                    if aliased not in candidates:
                        candidates.append(aliased)
            position += 1
        return candidates
