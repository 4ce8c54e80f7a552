"""
View models handed to the rendering layer.

Templates never compute addresses themselves: every bound node is turned into
an immutable view carrying its state path, input name, html id and meta key.
Template (stencil) fields expose their template-safe address and no
collection.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Tuple, TYPE_CHECKING

from formstate.attachments import AttachmentField
from formstate.fields import Layout, Section
from formstate.state_path import id_from_state_path, meta_key_from_state_path, name_from_state_path

if TYPE_CHECKING:
    from formstate.context import FormContext
    from formstate.form import Form

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldView:
    key: str
    type: str
    label: str
    state_path: str
    input_name: str
    html_id: str
    meta_key: str
    value: Any
    is_template: bool
    template_path: Optional[str] = None
    required: bool = False
    disabled: bool = False
    help: Optional[str] = None
    placeholder: Optional[str] = None
    collection_name: Optional[str] = None
    attachments: Tuple[Any, ...] = ()


@dataclass(frozen=True)
class ItemView:
    index: int
    stable_id: str
    state_path: str
    title: Optional[str]
    fields: Tuple[Any, ...]


@dataclass(frozen=True)
class GroupView:
    key: str
    label: str
    state_path: str
    input_name: str
    is_template: bool
    items: Tuple[ItemView, ...]
    template_fields: Tuple[Any, ...]
    min_items: Optional[int] = None
    max_items: Optional[int] = None
    sortable: bool = True
    collapsible: bool = False
    add_button_label: Optional[str] = None


@dataclass(frozen=True)
class SectionView:
    key: str
    label: str
    state_path: str
    is_template: bool
    children: Tuple[Any, ...]


@dataclass(frozen=True)
class LayoutView:
    type: str
    span: Optional[int]
    children: Tuple[Any, ...]


@dataclass(frozen=True)
class FormView:
    owner_type: Optional[str]
    nodes: Tuple[Any, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class FormViewBuilder:
    """Turns bound nodes into view models."""

    @staticmethod
    def build(form: 'Form', context: Optional['FormContext'] = None, data: Optional[Dict[str, Any]] = None) -> FormView:
        nodes = form.bind(context, data)
        return FormView(
            owner_type=form.owner_type,
            nodes=tuple(FormViewBuilder.node_view(node) for node in nodes),
        )

    @staticmethod
    def node_view(node: Any) -> Any:
        if isinstance(node, Layout):
            return LayoutView(
                type=node.type,
                span=getattr(node, 'span', None),
                children=tuple(FormViewBuilder.node_view(child) for child in node.children),
            )
        if getattr(node, 'is_repeating_group', False):
            return FormViewBuilder.group_view(node)
        if isinstance(node, Section):
            return SectionView(
                key=node.key,
                label=node.get_label(),
                state_path=node.state_path,
                is_template=node.is_template,
                children=tuple(FormViewBuilder.node_view(child) for child in node.bound_children()),
            )
        return FormViewBuilder.field_view(node)

    @staticmethod
    def group_view(group: Any) -> GroupView:
        items = []
        if group.item_list is not None:
            for item in group.item_list:
                items.append(ItemView(
                    index=item.index,
                    stable_id=item.stable_id,
                    state_path=item.state_path,
                    title=group.render_head_title(item.data),
                    fields=tuple(FormViewBuilder.node_view(child) for child in item.fields),
                ))
        path = group.state_path
        return GroupView(
            key=group.key,
            label=group.get_label(),
            state_path=path,
            input_name=name_from_state_path(path),
            is_template=group.is_template,
            items=tuple(items),
            template_fields=tuple(FormViewBuilder.node_view(child) for child in group.template_fields),
            min_items=group.min_items_value,
            max_items=group.max_items_value,
            sortable=group.sortable_flag,
            collapsible=group.collapsible_flag,
            add_button_label=group.add_button_label_text,
        )

    @staticmethod
    def field_view(node: Any) -> FieldView:
        path = node.state_path
        collection_name = None
        attachments: Tuple[Any, ...] = ()
        if isinstance(node, AttachmentField):
            collection_name = node.collection_name
            attachments = tuple(node.get_value() or ())
        return FieldView(
            key=node.key,
            type=node.type,
            label=node.get_label(),
            state_path=path,
            input_name=name_from_state_path(path),
            html_id=id_from_state_path(path),
            meta_key=meta_key_from_state_path(path),
            value=None if isinstance(node, AttachmentField) else node.get_value(),
            is_template=node.is_template,
            template_path=node.template_safe_state_path if node.is_template else None,
            required=node.required_flag,
            disabled=node.disabled_flag,
            help=node.help_text,
            placeholder=node.placeholder_text,
            collection_name=collection_name,
            attachments=attachments,
        )

