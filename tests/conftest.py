"""Pytest configuration and shared fixtures."""
import itertools
from typing import Any, Dict, List

import pytest

import formstate.config as config_module
from formstate import (
    AttachmentField,
    Form,
    FormContext,
    RepeatingGroup,
    Section,
    TextInput,
)


class InMemoryAttachmentStore:
    """Attachment store keeping everything in a dict; records every call."""

    def __init__(self):
        self.attachments: Dict[int, Dict[str, Any]] = {}
        self.calls: List[tuple] = []
        self._ids = itertools.count(1)

    def upload(self) -> int:
        """Simulate the upload endpoint: a new, not yet owned attachment."""
        attachment_id = next(self._ids)
        self.attachments[attachment_id] = {
            'id': attachment_id,
            'owner_type': None,
            'owner_id': None,
            'collection_name': None,
            'order': 0,
            'props': {},
        }
        return attachment_id

    def seed(self, owner_type: str, owner_id: Any, collection_name: str, count: int = 1) -> List[int]:
        """Create attachments already owned by a record."""
        ids = [self.upload() for _ in range(count)]
        for position, attachment_id in enumerate(ids):
            self.attachments[attachment_id].update(
                owner_type=owner_type, owner_id=owner_id, collection_name=collection_name, order=position,
            )
        return ids

    def attach(self, ids, owner_type, owner_id, collection_name):
        self.calls.append(('attach', list(ids), owner_type, owner_id, collection_name))
        existing = len(self.find(owner_type, owner_id, collection_name))
        for offset, attachment_id in enumerate(ids):
            self.attachments[attachment_id].update(
                owner_type=owner_type, owner_id=owner_id, collection_name=collection_name, order=existing + offset,
            )

    def set_order(self, collection_name, ordered_ids):
        self.calls.append(('set_order', collection_name, list(ordered_ids)))
        for position, attachment_id in enumerate(ordered_ids):
            attachment = self.attachments.get(attachment_id)
            if attachment is not None and attachment['collection_name'] == collection_name:
                attachment['order'] = position

    def set_properties(self, attachment_id, props):
        self.calls.append(('set_properties', attachment_id, dict(props)))
        self.attachments[attachment_id]['props'].update(props)

    def delete_where(self, collection_name, ids):
        self.calls.append(('delete_where', collection_name, list(ids)))
        for attachment_id in ids:
            attachment = self.attachments.get(attachment_id)
            if attachment is not None and attachment['collection_name'] == collection_name:
                del self.attachments[attachment_id]

    def find(self, owner_type, owner_id, collection_name):
        found = [
            a for a in self.attachments.values()
            if a['owner_type'] == owner_type and a['owner_id'] == owner_id and a['collection_name'] == collection_name
        ]
        return sorted(found, key=lambda a: a['order'])

    def collection_ids(self, owner_type, owner_id, collection_name) -> List[int]:
        return [a['id'] for a in self.find(owner_type, owner_id, collection_name)]


class InMemoryRecordStore:
    """Record store assigning incrementing identifiers."""

    def __init__(self):
        self.records: Dict[int, Dict[str, Any]] = {}
        self._ids = itertools.count(1)

    def save(self, entity):
        identifier = entity.identifier if entity.identifier is not None else next(self._ids)
        self.records[identifier] = dict(entity.data)
        return identifier


@pytest.fixture(autouse=True)
def reset_formstate_config():
    """Restore the thread-local config around each test."""
    original = getattr(config_module._config_context, 'value', None)
    config_module.reset_config()

    yield

    if original is None:
        config_module.reset_config()
    else:
        config_module._config_context.value = original


@pytest.fixture
def attachment_store():
    return InMemoryAttachmentStore()


@pytest.fixture
def record_store():
    return InMemoryRecordStore()


@pytest.fixture
def gallery_form():
    """Article form: title plus a gallery of captioned images."""
    return Form.make('article').schema([
        TextInput.make('title').required(),
        RepeatingGroup.make('gallery').schema([
            TextInput.make('caption'),
            AttachmentField.make('image'),
        ]),
    ])


@pytest.fixture
def chapters_form():
    """Book form: chapters -> body section -> sections -> image."""
    return Form.make('book').schema([
        RepeatingGroup.make('chapters').schema([
            TextInput.make('heading'),
            Section.make('body').schema([
                RepeatingGroup.make('sections').schema([
                    TextInput.make('text'),
                    AttachmentField.make('image'),
                ]),
            ]),
        ]),
    ])


@pytest.fixture
def create_context(attachment_store):
    return FormContext.for_create('article', attachment_store=attachment_store)


@pytest.fixture
def edit_context_factory(attachment_store):
    """Build edit contexts for existing records."""
    def factory(stored_data, owner_id=1, owner_type='article'):
        return FormContext.for_edit(owner_type, owner_id, stored_data, attachment_store=attachment_store)
    return factory
