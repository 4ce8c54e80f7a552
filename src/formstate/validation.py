"""
Validation rule keys and rule strings.

Only keys and rule strings are produced here; evaluating them is the job of
whatever validator the application uses. Keys are wildcard addresses: every
item token is replaced by '*', so one rule covers every item:

    gallery.*.title
    chapters.*.body.sections.*.image
"""

import logging
from typing import Any, Dict, List, Optional

from formstate.fields import NumberInput, Section, TextInput, iter_schema_fields
from formstate.state_path import wildcard_state_path

logger = logging.getLogger(__name__)


class FieldValidationRuleExtractor:
    """Derives rule strings from a field's declaration."""

    @staticmethod
    def extract(field: Any) -> List[str]:
        rules = list(field.get_rules())

        if getattr(field, 'is_repeating_group', False):
            rules.append('array')
            if field.min_items_value is not None:
                rules.append(f'min:{field.min_items_value}')
            if field.max_items_value is not None:
                rules.append(f'max:{field.max_items_value}')
        elif isinstance(field, Section):
            rules.append('array')
        elif isinstance(field, NumberInput):
            rules.append('numeric')
        elif isinstance(field, TextInput):
            rules.append('string')

        attributes = field.validation_attributes()
        if attributes.get('min_length') is not None:
            rules.append(f"min:{attributes['min_length']}")
        if attributes.get('max_length') is not None:
            rules.append(f"max:{attributes['max_length']}")
        if attributes.get('pattern'):
            rules.append(f"regex:/{attributes['pattern']}/")
        if attributes.get('min') is not None:
            rules.append(f"min:{attributes['min']}")
        if attributes.get('max') is not None:
            rules.append(f"max:{attributes['max']}")

        if 'required' not in rules and 'nullable' not in rules:
            rules.insert(0, 'nullable')
        return FieldValidationRuleExtractor._dedupe(rules)

    @staticmethod
    def _dedupe(rules: List[str]) -> List[str]:
        seen = []
        for rule in rules:
            if rule not in seen:
                seen.append(rule)
        return seen


def _collect(nodes: List[Any], container: Optional[Any], rules: Dict[str, List[str]]) -> None:
    for node in iter_schema_fields(nodes):
        bound = node.with_container(container)
        rules[wildcard_state_path(bound)] = FieldValidationRuleExtractor.extract(bound)

        if getattr(bound, 'is_repeating_group', False):
            _collect(bound.get_child_schema(), bound.template_scope(), rules)
        elif isinstance(bound, Section):
            _collect(bound.get_child_schema(), bound, rules)


def build_validation_rules(form: Any) -> Dict[str, List[str]]:
    """Rule strings keyed by wildcard address for every node of a form.

    Args:
        form: formstate.form.Form (or anything with get_schema())
    """
    rules: Dict[str, List[str]] = {}
    _collect(form.get_schema(), None, rules)
    logger.debug(f"Built {len(rules)} validation rule key(s)")
    return rules
