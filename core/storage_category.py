"""
Storage client for knowledge base categories.
"""

from typing import Any, Dict, List, Optional
from uuid import UUID

import psycopg

from core.schemas import Category
from core.storage_base import BaseStorageClient, column_list, row_to_dict
from utils.logger import get_logger
from utils.text import slugify

logger = get_logger(__name__)

CATEGORY_COLUMNS = (
    "id",
    "name",
    "slug",
    "description",
    "parent_id",
    "sort_order",
    "created_at",
    "updated_at",
)


def build_category_tree(categories: List[Category]) -> List[Category]:
    """
    Nest a flat category list into a tree.

    Siblings are ordered by sort_order, then name. A category whose parent
    is not in the list is dropped together with its subtree.
    """
    ordered = sorted(categories, key=lambda c: (c.sort_order, c.name))
    nodes = {c.id: c.model_copy(update={"children": []}) for c in ordered}

    roots: List[Category] = []
    for category in ordered:
        node = nodes[category.id]
        if category.parent_id is None:
            roots.append(node)
        elif category.parent_id in nodes:
            nodes[category.parent_id].children.append(node)
        else:
            logger.debug(f"Dropping category {category.id}: parent {category.parent_id} missing")
    return roots


class CategoryClient(BaseStorageClient):
    """Storage client for the categories table."""

    def list_categories(self) -> List[Category]:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT {column_list(CATEGORY_COLUMNS)} FROM categories ORDER BY sort_order, name"  # type: ignore
                )
                return [Category(**row_to_dict(CATEGORY_COLUMNS, r)) for r in cur.fetchall()]

    def get_category_tree(self) -> List[Category]:
        return build_category_tree(self.list_categories())

    def get_category(self, category_id: UUID) -> Optional[Category]:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT {column_list(CATEGORY_COLUMNS)} FROM categories WHERE id = %s",  # type: ignore
                    (category_id,),
                )
                row = cur.fetchone()
        return Category(**row_to_dict(CATEGORY_COLUMNS, row)) if row else None

    def create_category(
        self,
        name: str,
        description: Optional[str] = None,
        parent_id: Optional[UUID] = None,
        sort_order: int = 0,
        slug: Optional[str] = None,
    ) -> Category:
        """
        Create a category.

        Raises:
            ValueError: If the name is empty, the parent does not exist or
                the slug is taken
        """
        if not name or not name.strip():
            raise ValueError("name cannot be empty")
        slug = slugify(slug or name)

        with self.get_connection() as conn:
            with conn.cursor() as cur:
                if parent_id is not None:
                    cur.execute("SELECT 1 FROM categories WHERE id = %s", (parent_id,))
                    if not cur.fetchone():
                        raise ValueError(f"Parent category {parent_id} not found")
                try:
                    cur.execute(
                        f"""
                        INSERT INTO categories (name, slug, description, parent_id, sort_order)
                        VALUES (%s, %s, %s, %s, %s)
                        RETURNING {column_list(CATEGORY_COLUMNS)}
                        """,  # type: ignore
                        (name.strip(), slug, description, parent_id, sort_order),
                    )
                except psycopg.errors.UniqueViolation as e:
                    raise ValueError(f"Category slug '{slug}' already exists") from e
                category = Category(**row_to_dict(CATEGORY_COLUMNS, cur.fetchone()))

        logger.info(f"Created category '{category.name}' ({category.id})")
        return category

    def _ancestor_ids(self, cur, category_id: UUID) -> List[UUID]:
        cur.execute(
            """
            WITH RECURSIVE ancestors AS (
                SELECT id, parent_id FROM categories WHERE id = %s
                UNION ALL
                SELECT c.id, c.parent_id FROM categories c
                JOIN ancestors a ON c.id = a.parent_id
            )
            SELECT id FROM ancestors
            """,
            (category_id,),
        )
        return [row[0] for row in cur.fetchall()]

    def update_category(self, category_id: UUID, updates: Dict[str, Any]) -> Category:
        """
        Update name, slug, description, parent or sort order.

        Raises:
            ValueError: If the category is missing, or the new parent is the
                category itself or one of its descendants
        """
        allowed = {"name", "slug", "description", "parent_id", "sort_order"}
        unknown = set(updates) - allowed
        if unknown:
            raise ValueError(f"Fields cannot be updated: {sorted(unknown)}")
        if not updates:
            raise ValueError("No fields to update")

        updates = dict(updates)
        if "name" in updates and (not updates["name"] or not updates["name"].strip()):
            raise ValueError("name cannot be empty")
        if updates.get("slug"):
            updates["slug"] = slugify(updates["slug"])

        with self.get_connection() as conn:
            with conn.cursor() as cur:
                new_parent = updates.get("parent_id")
                if new_parent is not None:
                    if new_parent == category_id:
                        raise ValueError("A category cannot be its own parent")
                    # The new parent's ancestor chain must not pass through this category
                    chain = self._ancestor_ids(cur, new_parent)
                    if not chain:
                        raise ValueError(f"Parent category {new_parent} not found")
                    if category_id in chain:
                        raise ValueError("Category parent would create a cycle")

                assignments = ", ".join(f"{field} = %s" for field in updates)
                try:
                    cur.execute(
                        f"""
                        UPDATE categories SET {assignments}, updated_at = NOW()
                        WHERE id = %s
                        RETURNING {column_list(CATEGORY_COLUMNS)}
                        """,  # type: ignore
                        list(updates.values()) + [category_id],
                    )
                except psycopg.errors.UniqueViolation as e:
                    raise ValueError(f"Category slug '{updates.get('slug')}' already exists") from e
                row = cur.fetchone()
                if not row:
                    raise ValueError(f"Category {category_id} not found")

        return Category(**row_to_dict(CATEGORY_COLUMNS, row))

    def delete_category(self, category_id: UUID) -> None:
        """
        Delete a category. Its articles are kept with category_id set to NULL.

        Raises:
            ValueError: If the category is missing or still has children
        """
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT COUNT(*) FROM categories WHERE parent_id = %s", (category_id,))
                if cur.fetchone()[0] > 0:
                    raise ValueError(f"Category {category_id} has child categories")
                cur.execute(
                    "UPDATE articles SET category_id = NULL WHERE category_id = %s",
                    (category_id,),
                )
                cur.execute("DELETE FROM categories WHERE id = %s", (category_id,))
                if cur.rowcount == 0:
                    raise ValueError(f"Category {category_id} not found")
        logger.info(f"Deleted category {category_id}")
