"""Tests for address resolution and path helpers."""
import pytest

from formstate import AddressResolutionError, RepeatingGroup, Section, TextInput
from formstate.state_path import (
    TEMPLATE_TOKEN,
    compose_path,
    field_name,
    id_from_state_path,
    is_template_path,
    is_valid_item_token,
    meta_key_from_state_path,
    name_from_state_path,
    parent_path,
    resolve_as_child_prefix,
    resolve_state_path,
    shorten_name,
    split_path,
    to_dot_notation,
    wildcard_state_path,
)


class TestPathStrings:
    """Pure string helpers."""

    def test_split_and_compose(self):
        assert split_path('gallery.0.image') == ['gallery', '0', 'image']
        assert split_path('') == []
        assert compose_path('gallery.0', 'image') == 'gallery.0.image'
        assert compose_path('', 'image') == 'image'
        assert compose_path(None, 'image') == 'image'

    def test_parent_and_field_name(self):
        assert parent_path('gallery.0.image') == 'gallery.0'
        assert parent_path('title') is None
        assert field_name('gallery.0.image') == 'image'

    def test_to_dot_notation(self):
        assert to_dot_notation('gallery[2][photo]') == 'gallery.2.photo'
        assert to_dot_notation('gallery[2].photo') == 'gallery.2.photo'
        assert to_dot_notation('title') == 'title'
        assert to_dot_notation('') == ''

    def test_input_name_and_html_id(self):
        assert name_from_state_path('gallery.0.image') == 'gallery[0][image]'
        assert name_from_state_path('title') == 'title'
        assert id_from_state_path('gallery.0.image') == 'gallery-0-image'

    def test_html_id_fallback_is_deterministic(self):
        first = id_from_state_path('...')
        assert first.startswith('field-')
        assert first == id_from_state_path('...')

    def test_meta_keys(self):
        assert meta_key_from_state_path('Gallery.0.Image') == 'gallery_0_image'

    def test_template_path_helpers(self):
        assert is_template_path('items.__TEMPLATE__.image')
        assert not is_template_path('items.0.image')

    @pytest.mark.parametrize('token,valid', [
        ('a1b2c3', True),
        ('0', True),
        ('item-7_x', True),
        (TEMPLATE_TOKEN, False),
        ('__ITEM__', False),
        ('*', False),
        ('', False),
        ('a.b', False),
        (5, False),
    ])
    def test_item_token_validity(self, token, valid):
        assert is_valid_item_token(token) is valid


class TestResolveStatePath:
    """Compositional address resolution."""

    def test_root_field_uses_key(self):
        assert TextInput.make('name').state_path == 'name'

    def test_child_of_section(self):
        section = Section.make('profile')
        avatar = TextInput.make('avatar').with_container(section)
        assert avatar.state_path == 'profile.avatar'
        assert avatar.state_path == compose_path(resolve_as_child_prefix(section), avatar.key)

    def test_item_scope_prefix(self):
        group = RepeatingGroup.make('gallery')
        image = TextInput.make('image').with_container(group.item_scope('a1'))
        assert image.state_path == 'gallery.a1.image'

    def test_explicit_path_wins(self):
        group = RepeatingGroup.make('gallery')
        field = TextInput.make('image').with_container(group.item_scope('a1')).with_state_path('custom.deep.path')
        assert field.state_path == 'custom.deep.path'

    def test_explicit_path_can_be_cleared(self):
        field = TextInput.make('image').with_state_path('custom.deep.path').with_state_path(None)
        assert field.state_path == 'image'

    def test_non_container_fails_fast(self):
        field = TextInput.make('image').with_container(object())
        with pytest.raises(AddressResolutionError):
            resolve_state_path(field)

    def test_cyclic_chain_fails_fast(self):
        outer = Section.make('outer')
        inner = Section.make('inner').with_container(outer)
        outer.container = inner
        with pytest.raises(AddressResolutionError):
            resolve_state_path(inner)

    def test_item_token_replacement(self):
        chapters = RepeatingGroup.make('chapters')
        sections = RepeatingGroup.make('sections').with_container(chapters.item_scope('c1'))
        image = TextInput.make('image').with_container(sections.item_scope('s1'))
        assert resolve_state_path(image) == 'chapters.c1.sections.s1.image'
        assert resolve_state_path(image, TEMPLATE_TOKEN) == 'chapters.__TEMPLATE__.sections.__TEMPLATE__.image'
        assert wildcard_state_path(image) == 'chapters.*.sections.*.image'


class TestShortenName:
    """Length capping for derived names."""

    def test_short_names_unchanged(self):
        assert shorten_name('image', 'image.gallery.0', 120) == 'image.gallery.0'

    def test_long_names_get_hash_suffix(self):
        name = 'image.' + 'x' * 200
        shortened = shorten_name('image', name, 120)
        assert shortened.startswith('image.')
        assert len(shortened) == len('image.') + 12
        assert shortened == shorten_name('image', name, 120)
        assert shortened != shorten_name('image', name + 'y', 120)
