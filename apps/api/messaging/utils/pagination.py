"""Pagination utilities for list operations."""

from dataclasses import dataclass

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from messaging.core.errors import ValidationError


# Pagination limits
DEFAULT_PAGE = 1
DEFAULT_PER_PAGE = 20
MAX_PER_PAGE = 100


@dataclass(frozen=True)
class PaginationParams:
    """Validated page/per_page pair."""

    page: int
    per_page: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page

    def as_dict(self) -> dict:
        return {"page": self.page, "per_page": self.per_page}


def get_pagination(page: int | None = None, per_page: int | None = None) -> PaginationParams:
    page = DEFAULT_PAGE if page is None else page
    per_page = DEFAULT_PER_PAGE if per_page is None else per_page
    if page < 1:
        raise ValidationError("page must be >= 1", details={"page": page})
    if per_page < 1 or per_page > MAX_PER_PAGE:
        raise ValidationError(
            f"per_page must be between 1 and {MAX_PER_PAGE}", details={"per_page": per_page}
        )
    return PaginationParams(page=page, per_page=per_page)


def page_count(total: int, per_page: int) -> int:
    return (total + per_page - 1) // per_page if per_page > 0 else 0


def paginate_select(db: Session, stmt: Select, pagination: PaginationParams) -> tuple[list, int]:
    """
    Apply pagination to a 2.0-style select of ORM entities.

    Returns:
        (items, total_count)
    """
    total = db.execute(select(func.count()).select_from(stmt.order_by(None).subquery())).scalar_one()
    items = db.execute(stmt.offset(pagination.offset).limit(pagination.per_page)).scalars().all()
    return list(items), total
