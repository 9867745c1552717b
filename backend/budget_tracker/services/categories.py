from __future__ import annotations

from typing import Iterable

from ..entities import Record


def potential_parents(categories: Iterable[Record], category_type: str, exclude_id: str | None = None) -> list[Record]:
    """Categories that may be chosen as a parent.

    Only one level of nesting is offered: a category that already has a
    parent is never a candidate, nor is the category being edited.
    """
    return [
        c
        for c in categories
        if c.get("type") == category_type
        and c.get("categoryId") != exclude_id
        and not c.get("parentCategoryId")
    ]


def nest_categories(categories: Iterable[Record]) -> list[Record]:
    cats = list(categories)
    return [
        {**parent, "subcategories": [c for c in cats if c.get("parentCategoryId") == parent.get("categoryId")]}
        for parent in cats
        if not parent.get("parentCategoryId")
    ]
