"""
Field nodes: the atomic units of a form schema.

A field is declared once (fluent setters mutate the declaration) and bound
many times (binding returns clones, see formstate.capabilities). Each node
type implements the same small set of hooks so forms, sections and repeating
groups can walk a schema without knowing concrete types:

- bind_for_display(container, data, context) -> bound clone filled from data
- bind_as_template(container)                -> template clone, no data
- prepare_for_save(raw, submission, context, stored) -> FieldPersistenceResult
- nested_cleanup_actions(stored, context)    -> callables releasing resources
- get_child_schema()                         -> declared children (containers)

Layout wrappers (Layout/Row/Col) are transparent: they group fields visually
but contribute no key and no address segment.
"""

import json
import logging
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, TYPE_CHECKING

from formstate.capabilities import Clonable, HasContainer, HasStatePath, IsTemplate
from formstate.contracts import HandlesNestedCleanup, HandlesPersistence
from formstate.errors import StructuralError
from formstate.persistence import FieldPersistenceResult

if TYPE_CHECKING:
    from formstate.context import FormContext
    from formstate.submission import Submission

logger = logging.getLogger(__name__)


def value_is_meaningful(value: Any) -> bool:
    """Whether a normalized value counts as user-provided data.

    None, blank strings and empty lists/dicts are not meaningful.
    """
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ''
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) > 0
    return True


class Field(HasContainer, HasStatePath, IsTemplate):
    """Base field node: key, display options, value, and persistence hooks."""

    TYPE = 'field'

    def __init__(self, key: str):
        if not key or not isinstance(key, str):
            raise ValueError(f"Field key must be a non-empty string, got {key!r}")
        self.key = key
        self.label_text: Optional[str] = None
        self.help_text: Optional[str] = None
        self.default_value: Any = None
        self.rules: List[str] = []
        self.required_flag = False
        self.disabled_flag = False
        self.placeholder_text: Optional[str] = None
        self._value: Any = None

    @classmethod
    def make(cls, key: str, *args, **kwargs):
        return cls(key, *args, **kwargs)

    def _after_clone(self) -> None:
        self.rules = list(self.rules)

    def __repr__(self) -> str:
        flags = ' template' if self.is_template else ''
        return f"<{type(self).__name__} key={self.key!r}{flags}>"

    # ========== DECLARATION (fluent, mutates the declaration) ==========

    def label(self, label: Optional[str]):
        self.label_text = label
        return self

    def help(self, text: Optional[str]):
        self.help_text = text
        return self

    def default(self, value: Any):
        self.default_value = value
        return self

    def with_rules(self, rules: List[str]):
        self.rules = list(rules)
        return self

    def required(self, required: bool = True):
        self.required_flag = required
        if required and 'required' not in self.rules:
            self.rules.append('required')
        elif not required and 'required' in self.rules:
            self.rules.remove('required')
        return self

    def disabled(self, disabled: bool = True):
        self.disabled_flag = disabled
        return self

    def placeholder(self, text: str):
        self.placeholder_text = text
        return self

    # ========== TYPE / VALUE ==========

    @property
    def type(self) -> str:
        return self.TYPE

    def get_label(self) -> str:
        return self.label_text if self.label_text is not None else self.key

    def get_value(self) -> Any:
        return self._value if self._value is not None else self.default_value

    def set_value(self, value: Any) -> None:
        self._value = value

    @property
    def value(self) -> Any:
        return self.get_value()

    def extract(self, raw: Any) -> Any:
        """Normalize a raw submitted value."""
        return raw

    def get_child_schema(self) -> List[Any]:
        return []

    def to_dict(self) -> Dict[str, Any]:
        return {
            'key': self.key,
            'type': self.type,
            'label': self.label_text,
            'help': self.help_text,
            'default': self.default_value,
            'rules': list(self.rules),
            'required': self.required_flag,
            'disabled': self.disabled_flag,
            'placeholder': self.placeholder_text,
        }

    # ========== VALIDATION ATTRIBUTES ==========

    def validation_attributes(self) -> Dict[str, Any]:
        """Length/range/pattern attributes used to derive rule strings."""
        return {}

    def get_rules(self) -> List[str]:
        return list(self.rules)

    # ========== BINDING HOOKS ==========

    def apply_stored_value(self, stored: Any, context: Optional['FormContext'] = None) -> None:
        """Fill this (bound) instance from the value stored under its key."""
        self.set_value(stored)

    def prepare_for_display(self, context: Optional['FormContext'] = None) -> None:
        """Last chance to load display data (attachments etc.). No-op by default."""

    def bind_for_display(self, container: Any, data: Mapping[str, Any], context: Optional['FormContext'] = None):
        bound = self.with_container(container)
        bound.apply_stored_value(data.get(self.key) if data else None, context)
        bound.prepare_for_display(context)
        return bound

    def bind_as_template(self, container: Any):
        return self.mark_as_template().with_container(container)

    def prepare_for_save(
        self,
        raw: Any,
        submission: Optional['Submission'] = None,
        context: Optional['FormContext'] = None,
        stored: Any = None,
    ) -> FieldPersistenceResult:
        """Normalize a submitted value; plain fields queue no deferred actions."""
        if self.is_template:
            return FieldPersistenceResult.empty()
        return FieldPersistenceResult.make(self.extract(raw))

    def nested_cleanup_actions(self, stored: Any, context: Optional['FormContext'] = None) -> List[Callable[[], None]]:
        """Actions releasing resources owned by this field when its item is removed."""
        return []


class TextInput(Field):
    """Single-line text input."""

    TYPE = 'text'

    def __init__(self, key: str):
        super().__init__(key)
        self.min_length_value: Optional[int] = None
        self.max_length_value: Optional[int] = None
        self.pattern_value: Optional[str] = None

    def min_length(self, length: int):
        self.min_length_value = length
        return self

    def max_length(self, length: int):
        self.max_length_value = length
        return self

    def pattern(self, pattern: str):
        self.pattern_value = pattern
        return self

    def extract(self, raw: Any) -> Any:
        if isinstance(raw, str):
            stripped = raw.strip()
            return stripped if stripped != '' else None
        return raw

    def validation_attributes(self) -> Dict[str, Any]:
        return {
            'min_length': self.min_length_value,
            'max_length': self.max_length_value,
            'pattern': self.pattern_value,
        }


class Textarea(TextInput):
    TYPE = 'textarea'

    def extract(self, raw: Any) -> Any:
        # Keep inner whitespace/newlines, only blank becomes None
        if isinstance(raw, str) and raw.strip() == '':
            return None
        return raw


class NumberInput(Field):
    """Numeric input; numeric strings are converted on extract."""

    TYPE = 'number'

    def __init__(self, key: str):
        super().__init__(key)
        self.min_value: Optional[float] = None
        self.max_value: Optional[float] = None

    def min(self, value: float):
        self.min_value = value
        return self

    def max(self, value: float):
        self.max_value = value
        return self

    def extract(self, raw: Any) -> Any:
        if isinstance(raw, str):
            text = raw.strip()
            if text == '':
                return None
            try:
                return int(text)
            except ValueError:
                pass
            try:
                return float(text)
            except ValueError:
                # Leave unparseable input for the validation layer to reject
                return text
        return raw

    def validation_attributes(self) -> Dict[str, Any]:
        return {'min': self.min_value, 'max': self.max_value}


class Layout(Clonable):
    """Transparent layout wrapper (no key, no address segment).

    Children are bound to whatever container the layout itself is bound to.
    """

    TYPE = 'layout'

    def __init__(self, children: Optional[List[Any]] = None):
        self.children: List[Any] = list(children or [])
        self.container: Optional[Any] = None
        self.is_template = False

    @classmethod
    def make(cls, *args, **kwargs):
        return cls(*args, **kwargs)

    def schema(self, children: List[Any]):
        self.children = list(children)
        return self

    def get_child_schema(self) -> List[Any]:
        return list(self.children)

    @property
    def type(self) -> str:
        return self.TYPE

    def __repr__(self) -> str:
        return f"<{type(self).__name__} children={len(self.children)}>"

    def bind_for_display(self, container: Any, data: Mapping[str, Any], context: Optional['FormContext'] = None):
        clone = self._clone()
        clone.container = container
        clone.children = [child.bind_for_display(container, data, context) for child in self.children]
        return clone

    def bind_as_template(self, container: Any):
        clone = self._clone()
        clone.container = container
        clone.is_template = True
        clone.children = [child.bind_as_template(container) for child in self.children]
        return clone


class Row(Layout):
    TYPE = 'row'

    def columns(self, columns: List[Any]):
        return self.schema(columns)


class Col(Layout):
    TYPE = 'col'

    def __init__(self, span: int = 12, children: Optional[List[Any]] = None):
        super().__init__(children)
        self.span = max(1, min(12, span))

    def fields(self, fields: List[Any]):
        return self.schema(fields)


def iter_schema_fields(schema: List[Any]) -> Iterator[Any]:
    """Yield keyed nodes of a schema, looking through layout wrappers.

    Keyed containers (sections, groups) are yielded themselves, not entered.
    """
    for node in schema:
        if isinstance(node, Layout):
            yield from iter_schema_fields(node.get_child_schema())
        else:
            yield node


def iter_cleanup_fields(schema: List[Any]) -> Iterator[Any]:
    """Keyed nodes of a schema that release resources when their item goes away."""
    for node in iter_schema_fields(schema):
        if isinstance(node, HandlesNestedCleanup):
            yield node


def check_schema_keys(nodes: List[Any], owner: str) -> None:
    """Reject keyed nodes that cannot be saved and keys declared twice.

    Raises:
        StructuralError: If a keyed node lacks prepare_for_save, or two
            nodes share a key.
    """
    keys = []
    for node in iter_schema_fields(nodes):
        if not isinstance(node, HandlesPersistence):
            raise StructuralError(f"{type(node).__name__} in {owner} does not implement prepare_for_save")
        keys.append(node.key)
    duplicates = sorted({key for key in keys if keys.count(key) > 1})
    if duplicates:
        raise StructuralError(f"Duplicate keys in {owner}: {duplicates}")


def walk_bound_fields(nodes: List[Any]) -> Iterator[Any]:
    """Yield every bound keyed node in a bound tree, depth first.

    Enters layouts, sections and repeating-group items (see RepeatingGroup.bound_children).
    """
    for node in nodes:
        if isinstance(node, Layout):
            yield from walk_bound_fields(node.children)
            continue
        yield node
        bound_children = getattr(node, 'bound_children', None)
        if callable(bound_children):
            yield from walk_bound_fields(bound_children())


class Section(Field):
    """Keyed, non-repeating container field.

    Its value is a mapping of child values; children address through it:
    'avatar' in section 'profile' -> 'profile.avatar'.
    """

    TYPE = 'section'

    def __init__(self, key: str):
        super().__init__(key)
        self.schema_nodes: List[Any] = []
        self._bound_children: List[Any] = []

    def _after_clone(self) -> None:
        super()._after_clone()
        self._bound_children = list(self._bound_children)

    def schema(self, children: List[Any]):
        check_schema_keys(children, f"section {self.key!r}")
        self.schema_nodes = list(children)
        return self

    def get_child_schema(self) -> List[Any]:
        return list(self.schema_nodes)

    def bound_children(self) -> List[Any]:
        return list(self._bound_children)

    def extract(self, raw: Any) -> Any:
        if isinstance(raw, str):
            decoded = json.loads(raw) if raw.strip() else {}
            return decoded if isinstance(decoded, dict) else {}
        return raw if isinstance(raw, dict) else {}

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['schema'] = [node.to_dict() for node in iter_schema_fields(self.schema_nodes)]
        return data

    def bind_for_display(self, container: Any, data: Mapping[str, Any], context: Optional['FormContext'] = None):
        bound = self.with_container(container)
        stored = data.get(self.key) if data else None
        section_data = stored if isinstance(stored, dict) else {}
        bound.set_value(section_data)
        bound._bound_children = [
            child.bind_for_display(bound, section_data, context) for child in self.schema_nodes
        ]
        return bound

    def bind_as_template(self, container: Any):
        bound = self.mark_as_template().with_container(container)
        bound._bound_children = [child.bind_as_template(bound) for child in self.schema_nodes]
        return bound

    def prepare_for_save(
        self,
        raw: Any,
        submission: Optional['Submission'] = None,
        context: Optional['FormContext'] = None,
        stored: Any = None,
    ) -> FieldPersistenceResult:
        if self.is_template:
            return FieldPersistenceResult.empty()

        raw_data = self.extract(raw)
        stored_data = stored if isinstance(stored, dict) else {}
        values: Dict[str, Any] = {}
        deferred: List[Callable] = []
        meaningful = False

        for child in iter_schema_fields(self.schema_nodes):
            bound_child = child.with_container(self)
            result = bound_child.prepare_for_save(
                raw_data.get(child.key), submission, context, stored_data.get(child.key)
            )
            deferred.extend(result.deferred_actions)
            if result.is_meaningful:
                meaningful = True
            if result.should_persist:
                values[child.key] = result.value

        return FieldPersistenceResult.make(values, deferred, meaningful=meaningful)

    def nested_cleanup_actions(self, stored: Any, context: Optional['FormContext'] = None) -> List[Callable[[], None]]:
        stored_data = stored if isinstance(stored, dict) else {}
        actions: List[Callable[[], None]] = []
        for child in iter_cleanup_fields(self.schema_nodes):
            bound_child = child.with_container(self)
            actions.extend(bound_child.nested_cleanup_actions(stored_data.get(child.key), context))
        return actions
