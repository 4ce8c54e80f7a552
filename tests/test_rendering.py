"""Tests for the view models handed to templates."""
from formstate import (
    AttachmentField,
    Col,
    FieldView,
    Form,
    FormViewBuilder,
    GroupView,
    RepeatingGroup,
    Row,
    TextInput,
)
from formstate.rendering import LayoutView, SectionView


class TestFieldViews:

    def test_root_field(self, gallery_form):
        view = FormViewBuilder.build(gallery_form, data={'title': 'Hello'})
        title = view.nodes[0]

        assert isinstance(title, FieldView)
        assert title.state_path == 'title'
        assert title.input_name == 'title'
        assert title.value == 'Hello'
        assert title.required
        assert not title.is_template
        assert title.template_path is None

    def test_item_field_addresses(self, gallery_form):
        view = FormViewBuilder.build(gallery_form, data={'gallery': [{'caption': 'First'}]})
        group = view.nodes[1]

        assert isinstance(group, GroupView)
        (item,) = group.items
        assert item.stable_id == '0'
        assert item.state_path == 'gallery.0'

        caption, image = item.fields
        assert caption.input_name == 'gallery[0][caption]'
        assert caption.value == 'First'
        assert image.state_path == 'gallery.0.image'
        assert image.meta_key == 'gallery_0_image'
        assert image.html_id == 'gallery-0-image'
        assert image.collection_name == 'image.gallery.0'
        assert image.value is None

    def test_stable_ids_drive_addresses(self, gallery_form):
        data = {'gallery': [{'_id': 'k3j9', 'caption': 'b'}, {'_id': 'a1', 'caption': 'a'}]}
        group = FormViewBuilder.build(gallery_form, data=data).nodes[1]
        assert [item.stable_id for item in group.items] == ['k3j9', 'a1']
        assert [item.index for item in group.items] == [0, 1]
        assert group.items[0].fields[1].collection_name == 'image.gallery.k3j9'


class TestTemplateViews:

    def test_template_fields(self, gallery_form):
        group = FormViewBuilder.build(gallery_form, data={}).nodes[1]
        assert group.items == ()

        caption, image = group.template_fields
        assert caption.is_template
        assert caption.input_name == 'gallery[__TEMPLATE__][caption]'
        assert image.state_path == 'gallery.__TEMPLATE__.image'
        assert image.template_path == 'gallery.__TEMPLATE__'
        assert image.collection_name is None

    def test_template_addresses_do_not_depend_on_items(self, gallery_form):
        empty = FormViewBuilder.build(gallery_form, data={}).nodes[1]
        full = FormViewBuilder.build(gallery_form, data={'gallery': [{'caption': 'x'}] * 3}).nodes[1]
        assert [f.state_path for f in empty.template_fields] == [f.state_path for f in full.template_fields]

    def test_nested_templates(self, chapters_form):
        chapters = FormViewBuilder.build(chapters_form, data={}).nodes[0]
        heading, body = chapters.template_fields

        assert isinstance(body, SectionView)
        assert body.is_template
        (sections,) = body.children
        assert isinstance(sections, GroupView)
        assert sections.is_template
        assert sections.state_path == 'chapters.__TEMPLATE__.body.sections'

        text, image = sections.template_fields
        assert image.state_path == 'chapters.__TEMPLATE__.body.sections.__TEMPLATE__.image'
        assert image.template_path == 'chapters.__TEMPLATE__.body.sections.__TEMPLATE__'

    def test_nested_templates_inside_real_items(self, chapters_form):
        data = {'chapters': [{'_id': 'c1', 'heading': 'One', 'body': {'sections': []}}]}
        chapters = FormViewBuilder.build(chapters_form, data=data).nodes[0]
        (chapter,) = chapters.items
        heading, body = chapter.fields
        (sections,) = body.children

        assert sections.state_path == 'chapters.c1.body.sections'
        text, image = sections.template_fields
        assert image.state_path == 'chapters.c1.body.sections.__TEMPLATE__.image'
        assert image.template_path == 'chapters.__TEMPLATE__.body.sections.__TEMPLATE__'


class TestAttachmentViews:

    def test_item_attachments_loaded_for_edit(self, gallery_form, attachment_store, edit_context_factory):
        stored = {'gallery': [{'_id': 'a1', 'caption': 'x', 'image': 'image.gallery.a1'}]}
        ids = attachment_store.seed('article', 1, 'image.gallery.a1', count=2)
        view = FormViewBuilder.build(gallery_form, edit_context_factory(stored))

        image = view.nodes[1].items[0].fields[1]
        assert [a['id'] for a in image.attachments] == ids

    def test_legacy_collection_is_kept(self, gallery_form, attachment_store, edit_context_factory):
        stored = {'gallery': [{'_id': 'a1', 'image': 'legacy.collection'}]}
        ids = attachment_store.seed('article', 1, 'legacy.collection')
        view = FormViewBuilder.build(gallery_form, edit_context_factory(stored))

        image = view.nodes[1].items[0].fields[1]
        assert image.collection_name == 'legacy.collection'
        assert [a['id'] for a in image.attachments] == ids

    def test_root_attachments(self, attachment_store, edit_context_factory):
        form = Form.make('article').schema([AttachmentField.make('cover').collection('covers')])
        ids = attachment_store.seed('article', 1, 'covers')
        (cover,) = FormViewBuilder.build(form, edit_context_factory({})).nodes
        assert cover.collection_name == 'covers'
        assert [a['id'] for a in cover.attachments] == ids

    def test_create_has_no_attachments(self, gallery_form, create_context):
        group = FormViewBuilder.build(gallery_form, create_context, {'gallery': [{}]}).nodes[1]
        assert group.items[0].fields[1].attachments == ()


class TestLayoutAndExport:

    def test_layout_views(self):
        form = Form.make('article').schema([
            Row.make().columns([
                Col(6, [TextInput.make('title')]),
                Col(6, [TextInput.make('subtitle')]),
            ]),
        ])
        (row,) = FormViewBuilder.build(form).nodes
        assert isinstance(row, LayoutView)
        assert row.type == 'row'
        assert [col.span for col in row.children] == [6, 6]
        assert row.children[1].children[0].state_path == 'subtitle'

    def test_group_options_and_head_title(self):
        form = Form.make('article').schema([
            RepeatingGroup.make('slides').schema([TextInput.make('caption')])
            .head_title('Slide: {caption}')
            .max_items(3)
            .collapsible()
            .add_button_label('Add slide'),
        ])
        (group,) = FormViewBuilder.build(form, data={'slides': [{'caption': 'Intro'}]}).nodes
        assert group.items[0].title == 'Slide: Intro'
        assert group.max_items == 3
        assert group.collapsible
        assert group.add_button_label == 'Add slide'

    def test_to_dict(self, gallery_form):
        data = FormViewBuilder.build(gallery_form, data={'gallery': [{'caption': 'a'}]}).to_dict()
        assert data['owner_type'] == 'article'
        item = data['nodes'][1]['items'][0]
        assert item['stable_id'] == '0'
        assert item['fields'][0]['input_name'] == 'gallery[0][caption]'
