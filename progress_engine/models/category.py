"""Category catalog used to validate and normalize XP category ids"""
from typing import Optional
from pydantic import BaseModel


class Category(BaseModel):
    """Growth category a task can award XP in"""
    id: str
    name: str


CATEGORIES: list[Category] = [
    Category(id="physical", name="Physical"),
    Category(id="mental", name="Mental"),
    Category(id="intellectual", name="Intellectual"),
    Category(id="spiritual", name="Spiritual"),
    Category(id="financial", name="Financial"),
    Category(id="career", name="Career"),
    Category(id="relationships", name="Relationships"),
]

CATEGORY_IDS: list[str] = [c.id for c in CATEGORIES]


def normalize_category_id(value: str, catalog: Optional[list[Category]] = None) -> Optional[str]:
    """
    Resolve a category name or id to its catalog id (case-insensitive)

    Returns None when the value matches nothing in the catalog.
    """
    needle = str(value).strip().lower()
    for category in catalog or CATEGORIES:
        if category.id.lower() == needle or category.name.lower() == needle:
            return category.id
    return None
