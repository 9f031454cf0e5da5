"""Category domain service."""

import logging
from typing import Optional

from firedragon.database.base import Database
from firedragon.domain.entities import (
    EXPENSE,
    INCOME,
    TRANSACTION_TYPES,
    TRANSFER,
    Category as CategoryEntity,
)
from firedragon.domain.errors import (
    ConflictError,
    DependencyError,
    NotFoundError,
    ValidationError,
    category_delete_blocked,
    category_name_not_found,
    category_not_found,
)

logger = logging.getLogger(__name__)

# Seeded once; cannot be deleted.
SYSTEM_CATEGORIES = [
    ("Salary", INCOME, "Regular employment income"),
    ("Investment", INCOME, "Income from investments"),
    ("Other Income", INCOME, "Miscellaneous income"),
    ("Housing", EXPENSE, "Rent, mortgage, and housing expenses"),
    ("Transportation", EXPENSE, "Car, public transport, and travel expenses"),
    ("Food", EXPENSE, "Groceries and dining out"),
    ("Utilities", EXPENSE, "Electricity, water, internet, etc."),
    ("Healthcare", EXPENSE, "Medical and health-related expenses"),
    ("Entertainment", EXPENSE, "Leisure and entertainment"),
    ("Other Expenses", EXPENSE, "Miscellaneous expenses"),
    ("Internal Transfer", TRANSFER, "Transfers between own wallets"),
    ("External Transfer", TRANSFER, "Transfers to or from external wallets"),
]


class CategoryService:
    """Service for managing categories."""

    def __init__(self, db: Database):
        """Initialize category service.

        Args:
            db: Database instance
        """
        self.db = db

    def create_category(
        self, name: str, category_type: str, description: Optional[str] = None
    ) -> int:
        """Create a user category.

        Args:
            name: Unique category name
            category_type: One of income, expense, transfer
            description: Optional description

        Returns:
            Category ID

        Raises:
            ValidationError: If name or type is invalid
            ConflictError: If the name is taken
        """
        name = name.strip() if name else ""
        if not name:
            raise ValidationError("Category must have a name")
        if category_type not in TRANSACTION_TYPES:
            raise ValidationError(
                f"Invalid category type '{category_type}'. "
                f"Expected one of: {', '.join(TRANSACTION_TYPES)}"
            )
        if self.db.get_category_by_name(name) is not None:
            raise ConflictError(f"Category with name '{name}' already exists")

        return self.db.create_category(name=name, category_type=category_type, description=description)

    def get_category(self, category_id: int) -> Optional[CategoryEntity]:
        """Get category by ID."""
        return self.db.get_category(category_id)

    def get_category_by_name(self, name: str) -> Optional[CategoryEntity]:
        """Get category by name."""
        return self.db.get_category_by_name(name)

    def resolve_category(self, category: str | int) -> CategoryEntity:
        """Resolve a category name or ID.

        Raises:
            NotFoundError: If no category matches
        """
        if isinstance(category, int):
            found = self.db.get_category(category)
            if found is None:
                raise NotFoundError(category_not_found(category))
            return found

        if category.isdigit():
            found = self.db.get_category(int(category))
            if found is not None:
                return found

        found = self.db.get_category_by_name(category)
        if found is None:
            raise NotFoundError(category_name_not_found(category))
        return found

    def list_categories(self, category_type: Optional[str] = None) -> list[CategoryEntity]:
        """List categories, optionally of one type."""
        return self.db.list_categories(category_type=category_type)

    def delete_category(self, category_id: int) -> None:
        """Delete a category.

        Raises:
            NotFoundError: If the category does not exist
            DependencyError: If it is a system category or still in use
        """
        with self.db.atomic():
            category = self.db.get_category(category_id)
            if category is None:
                raise NotFoundError(category_not_found(category_id))
            if category.is_system:
                raise DependencyError(f"System category '{category.name}' cannot be deleted")

            transaction_count = self.db.get_category_transaction_count(category_id)
            if transaction_count > 0:
                raise DependencyError(category_delete_blocked(category_id, transaction_count))

            self.db.delete_category(category_id)

    def seed_system_categories(self) -> int:
        """Create any missing system categories.

        Safe to call on every start.

        Returns:
            Number of categories created
        """
        created = 0
        with self.db.atomic():
            for name, category_type, description in SYSTEM_CATEGORIES:
                if self.db.get_category_by_name(name) is not None:
                    continue
                self.db.create_category(
                    name=name,
                    category_type=category_type,
                    is_system=True,
                    description=description,
                )
                created += 1
        if created:
            logger.info("Seeded %d system categories", created)
        return created
