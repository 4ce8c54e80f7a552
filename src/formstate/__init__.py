"""
Form-definition engine with nested repeating groups and stable addresses.

A schema of typed field nodes is declared once, bound to stored data for
display, and reconciled against submitted data on save.

Key Features:
- Compositional state paths ('gallery.a1b2c3.image') built top-down
- Repeating groups whose items keep a stable id across reorders
- Template (stencil) clones whose addresses never collide with real items
- Attachment collections named after the owning item's address
- Deferred attachment actions run only after the record has an identifier

Quick Start:
    >>> from formstate import Form, RepeatingGroup, TextInput, AttachmentField
    >>> form = Form.make('article').schema([
    ...     TextInput.make('title').required(),
    ...     RepeatingGroup.make('gallery').schema([
    ...         TextInput.make('caption'),
    ...         AttachmentField.make('image').collection('media'),
    ...     ]),
    ... ])
    >>> nodes = form.bind(data={'gallery': [{'caption': 'First'}]})
    >>> nodes[1].item_list.items[0].field('image').collection_name
    'media.gallery.0'

Modules:
    - state_path: address resolution and path string helpers
    - capabilities: container / state path / template mixins
    - fields, repeater, items: schema nodes and repeating-group items
    - collection_resolver, attachments: attachment collections
    - submission, request_processor: submitted data reconciliation
    - persistence, context, form: the save pipeline
    - validation, rendering: rule keys and view models
    - config: thread-local configuration
"""

__version__ = '0.1.0'

# Configuration
from formstate.config import (
    FormStateConfig,
    DEFAULT_CONFIG,
    set_config,
    get_config,
    reset_config,
    use_config,
)

# Errors
from formstate.errors import (
    FormStateError,
    StructuralError,
    AddressResolutionError,
    CollectionResolutionError,
    CleanupFailure,
    PersistenceOrderError,
)

# Addresses
from formstate.state_path import (
    TEMPLATE_TOKEN,
    WILDCARD_TOKEN,
    resolve_state_path,
    resolve_as_child_prefix,
    template_safe_state_path,
    wildcard_state_path,
)
from formstate.capabilities import Container, HasContainer, HasStatePath, IsTemplate

# Schema nodes
from formstate.fields import Field, TextInput, Textarea, NumberInput, Section, Layout, Row, Col
from formstate.repeater import RepeatingGroup
from formstate.items import Item, ItemScope, ItemIdRegistry, ItemFactory, ItemList
from formstate.attachments import AttachmentField, AttachmentOperation, AttachmentPayload
from formstate.collection_resolver import resolve_collection_name

# Save pipeline
from formstate.submission import Submission, parse_input, normalize_items
from formstate.request_processor import RequestProcessor, ProcessResult
from formstate.persistence import (
    FieldPersistenceResult,
    RecordRef,
    Entity,
    PersistenceCoordinator,
    FormPersistence,
)
from formstate.context import FormContext
from formstate.form import Form

# Outer surfaces
from formstate.validation import FieldValidationRuleExtractor, build_validation_rules
from formstate.rendering import FormView, GroupView, ItemView, FieldView, FormViewBuilder

__all__ = [
    '__version__',
    # Configuration
    'FormStateConfig',
    'DEFAULT_CONFIG',
    'set_config',
    'get_config',
    'reset_config',
    'use_config',
    # Errors
    'FormStateError',
    'StructuralError',
    'AddressResolutionError',
    'CollectionResolutionError',
    'CleanupFailure',
    'PersistenceOrderError',
    # Addresses
    'TEMPLATE_TOKEN',
    'WILDCARD_TOKEN',
    'resolve_state_path',
    'resolve_as_child_prefix',
    'template_safe_state_path',
    'wildcard_state_path',
    'Container',
    'HasContainer',
    'HasStatePath',
    'IsTemplate',
    # Schema nodes
    'Field',
    'TextInput',
    'Textarea',
    'NumberInput',
    'Section',
    'Layout',
    'Row',
    'Col',
    'RepeatingGroup',
    'Item',
    'ItemScope',
    'ItemIdRegistry',
    'ItemFactory',
    'ItemList',
    'AttachmentField',
    'AttachmentOperation',
    'AttachmentPayload',
    'resolve_collection_name',
    # Save pipeline
    'Submission',
    'parse_input',
    'normalize_items',
    'RequestProcessor',
    'ProcessResult',
    'FieldPersistenceResult',
    'RecordRef',
    'Entity',
    'PersistenceCoordinator',
    'FormPersistence',
    'FormContext',
    'Form',
    # Outer surfaces
    'FieldValidationRuleExtractor',
    'build_validation_rules',
    'FormView',
    'GroupView',
    'ItemView',
    'FieldView',
    'FormViewBuilder',
]
