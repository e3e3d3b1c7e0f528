from dataclasses import dataclass
from math import ceil
from typing import Generic, Optional, TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from autorecon.config import settings
from autorecon.exceptions import ValidationError

T = TypeVar("T")


@dataclass
class Page(Generic[T]):
    items: list[T]
    total: int
    page: int
    page_size: int
    total_pages: int


def paginate(db: Session, query: Select, page: int = 1, page_size: Optional[int] = None) -> Page:
    """Run an ordered query one page at a time, counting the full result first."""
    page_size = page_size or settings.DEFAULT_PAGE_SIZE
    if page < 1:
        raise ValidationError("page must be 1 or greater", {"page": page})
    if page_size < 1 or page_size > settings.MAX_PAGE_SIZE:
        raise ValidationError(
            f"page_size must be between 1 and {settings.MAX_PAGE_SIZE}", {"page_size": page_size}
        )

    count_query = select(func.count()).select_from(query.order_by(None).subquery())
    total = db.scalar(count_query) or 0
    items = db.scalars(
        query.offset((page - 1) * page_size)
        .limit(page_size)
        .execution_options(populate_existing=True)
    ).all()
    return Page(
        items=list(items),
        total=total,
        page=page,
        page_size=page_size,
        total_pages=ceil(total / page_size),
    )
