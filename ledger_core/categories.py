"""
Category display names.

Transactions and budgets only ever store the integer category id; names
are resolved here, at the boundary, in the caller's language.
"""

from typing import Optional

from pydantic import BaseModel


class CategoryName(BaseModel):
    """Localized names for one category."""

    en: str
    id: str


DEFAULT_CATEGORIES: dict[int, CategoryName] = {
    1: CategoryName(en="Food & Drinks", id="Makanan & Minuman"),
    2: CategoryName(en="Transportation", id="Transportasi"),
    3: CategoryName(en="Shopping", id="Belanja"),
    4: CategoryName(en="Entertainment", id="Hiburan"),
    5: CategoryName(en="Bills & Utilities", id="Tagihan & Utilitas"),
    6: CategoryName(en="Healthcare", id="Kesehatan"),
    7: CategoryName(en="Education", id="Pendidikan"),
    8: CategoryName(en="Other", id="Lainnya"),
    9: CategoryName(en="Salary", id="Gaji"),
    10: CategoryName(en="Business", id="Bisnis"),
    11: CategoryName(en="Investment", id="Investasi"),
    12: CategoryName(en="Other Income", id="Pendapatan Lain"),
}


class CategoryResolver:
    """Map category ids to display names, with user-defined overrides."""

    def __init__(self, categories: Optional[dict[int, CategoryName]] = None):
        self._categories = dict(DEFAULT_CATEGORIES)
        if categories:
            self._categories.update(categories)

    def register(self, category_id: int, en: str, id_name: Optional[str] = None) -> None:
        self._categories[category_id] = CategoryName(en=en, id=id_name or en)

    def name_for(self, category_id: int, language: str = "id") -> str:
        category = self._categories.get(category_id)
        if category is None:
            return f"Category {category_id}"
        return category.en if language == "en" else category.id
