"""Tests for the persistence coordinator and the save pipeline."""
from contextlib import contextmanager

import pytest

from formstate import (
    AttachmentField,
    CleanupFailure,
    Entity,
    FieldPersistenceResult,
    FormContext,
    FormPersistence,
    PersistenceCoordinator,
    PersistenceOrderError,
    RecordRef,
    RepeatingGroup,
    TextInput,
)
from formstate.contracts import AttachmentStore, HandlesNestedCleanup, HandlesPersistence, RecordStore


class TestFieldPersistenceResult:

    def test_make(self):
        action = lambda record: None
        result = FieldPersistenceResult.make('x', [action])
        assert result.value == 'x'
        assert result.deferred_actions == (action,)
        assert result.should_persist
        assert result.is_meaningful

    def test_meaningful_derived_from_value(self):
        assert not FieldPersistenceResult.make('  ').is_meaningful
        assert FieldPersistenceResult.make('', meaningful=True).is_meaningful

    def test_empty_and_skip(self):
        assert not FieldPersistenceResult.empty().should_persist
        skipped = FieldPersistenceResult.skip([print])
        assert not skipped.should_persist
        assert skipped.deferred_actions == (print,)


class TestPersistenceCoordinator:

    def test_deferred_actions_run_fifo(self):
        coordinator = PersistenceCoordinator()
        seen = []
        for value in (1, 2, 3):
            coordinator.add_deferred_action(lambda record, value=value: seen.append(value))

        coordinator.run_deferred(RecordRef('article', 1))
        assert seen == [1, 2, 3]
        assert coordinator.pending_deferred == 0

        coordinator.run_deferred(RecordRef('article', 1))
        assert seen == [1, 2, 3]

    def test_actions_receive_record(self):
        coordinator = PersistenceCoordinator()
        seen = []
        coordinator.add_deferred_action(lambda record: seen.append(record.owner_id))
        coordinator.run_deferred(RecordRef('article', 42))
        assert seen == [42]

    def test_record_without_identifier_rejected(self):
        coordinator = PersistenceCoordinator()
        seen = []
        coordinator.add_deferred_action(lambda record: seen.append(record))

        with pytest.raises(PersistenceOrderError):
            coordinator.run_deferred(RecordRef('article', None))
        assert seen == []
        assert coordinator.pending_deferred == 1

    def test_failure_propagates_and_empties_queue(self):
        coordinator = PersistenceCoordinator()
        seen = []

        def boom(record):
            raise RuntimeError('store down')

        coordinator.add_deferred_action(lambda record: seen.append(1))
        coordinator.add_deferred_action(boom)
        coordinator.add_deferred_action(lambda record: seen.append(3))

        with pytest.raises(RuntimeError, match='store down'):
            coordinator.run_deferred(RecordRef('article', 1))
        assert seen == [1]
        assert coordinator.pending_deferred == 0

    def test_cleanup_runs_fifo(self):
        coordinator = PersistenceCoordinator()
        seen = []
        coordinator.add_cleanup_action(lambda: seen.append('a'))
        coordinator.add_cleanup_action(lambda: seen.append('b'))
        coordinator.run_cleanup()
        assert seen == ['a', 'b']
        assert coordinator.pending_cleanup == 0

    def test_cleanup_failure_is_wrapped(self):
        coordinator = PersistenceCoordinator()
        original = KeyError('attachment 5')

        def boom():
            raise original

        coordinator.add_cleanup_action(boom)
        with pytest.raises(CleanupFailure) as excinfo:
            coordinator.run_cleanup()
        assert excinfo.value.original is original
        assert excinfo.value.__cause__ is original
        assert coordinator.pending_cleanup == 0

    def test_non_callables_rejected(self):
        coordinator = PersistenceCoordinator()
        with pytest.raises(TypeError):
            coordinator.add_deferred_action('not callable')
        with pytest.raises(TypeError):
            coordinator.add_cleanup_action(None)

    def test_request_scope_discards_on_error(self):
        coordinator = PersistenceCoordinator()
        with pytest.raises(ValueError):
            with coordinator.request_scope():
                coordinator.add_deferred_action(lambda record: None)
                coordinator.add_cleanup_action(lambda: None)
                raise ValueError('validation failed')
        assert coordinator.pending_deferred == 0
        assert coordinator.pending_cleanup == 0

    def test_request_scope_keeps_queue_on_success(self):
        coordinator = PersistenceCoordinator()
        with coordinator.request_scope():
            coordinator.add_deferred_action(lambda record: None)
        assert coordinator.pending_deferred == 1


class TestEntity:

    def test_ref(self):
        entity = Entity('article', {'title': 'x'})
        assert not entity.exists
        entity.identifier = 3
        assert entity.ref() == RecordRef('article', 3)


class TestFormPersistence:

    def test_create_attaches_after_save(self, gallery_form, attachment_store, record_store, create_context):
        events = attachment_store.calls

        class OrderedRecordStore(type(record_store)):
            def save(self, entity):
                events.append(('save',))
                return super().save(entity)

        upload = attachment_store.upload()
        raw = {
            'title': 'Hello',
            'gallery': {'new1': {'caption': 'First'}},
            '__attachments_uploaded[gallery_new1_image]': str(upload),
        }
        entity = FormPersistence(OrderedRecordStore()).save(gallery_form, raw, create_context)

        assert entity.identifier == 1
        assert [event[0] for event in events] == ['save', 'attach']
        (row,) = entity.data['gallery']
        collection = f"image.gallery.{row['_id']}"
        assert row['image'] == collection
        assert attachment_store.collection_ids('article', 1, collection) == [upload]
        assert create_context.record == RecordRef('article', 1)

    def test_transaction_wraps_save(self, gallery_form, record_store, create_context):
        log = []

        @contextmanager
        def transaction():
            log.append('begin')
            yield
            log.append('commit')

        FormPersistence(record_store, transaction=transaction).save(gallery_form, {'title': 'x'}, create_context)
        assert log == ['begin', 'commit']

    def test_failed_save_discards_actions(self, gallery_form, attachment_store, create_context):
        class FailingRecordStore:
            def save(self, entity):
                raise RuntimeError('db down')

        upload = attachment_store.upload()
        raw = {'title': 'x', '__attachments_uploaded[gallery_0_image]': str(upload), 'gallery': [{}]}
        with pytest.raises(RuntimeError):
            FormPersistence(FailingRecordStore()).save(gallery_form, raw, create_context)

        assert create_context.coordinator.pending_deferred == 0
        assert attachment_store.calls == []

    def test_store_returning_no_identifier(self, gallery_form, create_context):
        class BrokenRecordStore:
            def save(self, entity):
                return None

        with pytest.raises(PersistenceOrderError):
            FormPersistence(BrokenRecordStore()).save(gallery_form, {'title': 'x'}, create_context)

    def test_edit_cleans_up_before_save(self, gallery_form, attachment_store, record_store, edit_context_factory):
        stored = {'title': 'x', 'gallery': [{'_id': 'a1', 'caption': 'c', 'image': 'image.gallery.a1'}]}
        record_store.records[1] = dict(stored)
        attachment_store.seed('article', 1, 'image.gallery.a1')
        context = edit_context_factory(stored)
        events = attachment_store.calls

        class OrderedRecordStore(type(record_store)):
            def save(self, entity):
                events.append(('save',))
                return super().save(entity)

        entity = FormPersistence(OrderedRecordStore()).save(gallery_form, {'title': 'x', 'gallery': []}, context)

        assert entity.identifier == 1
        assert entity.data['gallery'] == []
        assert [event[0] for event in events] == ['delete_where', 'save']
        assert attachment_store.collection_ids('article', 1, 'image.gallery.a1') == []


class TestCollaboratorContracts:

    def test_in_memory_stores_satisfy_protocols(self, attachment_store, record_store):
        assert isinstance(attachment_store, AttachmentStore)
        assert isinstance(record_store, RecordStore)

    def test_record_store_without_save_rejected(self):
        with pytest.raises(TypeError):
            FormPersistence(object())

    def test_incomplete_attachment_store_rejected(self):
        class UploadOnly:
            def attach(self, ids, owner_type, owner_id, collection_name):
                pass

        with pytest.raises(TypeError):
            FormContext.for_create('article', attachment_store=UploadOnly())

    def test_field_hooks(self):
        for field in (TextInput.make('title'), AttachmentField.make('image'), RepeatingGroup.make('gallery')):
            assert isinstance(field, HandlesPersistence)
            assert isinstance(field, HandlesNestedCleanup)
