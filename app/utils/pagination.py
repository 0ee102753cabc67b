from typing import Annotated, Generic, List, TypeVar

from fastapi import Query
from pydantic import BaseModel, ConfigDict, Field

from app.config import settings


class PaginationParams(BaseModel):
    page: int = Field(default=1, ge=1, description="Page number (1-based)")
    page_size: int = Field(
        default=settings.HISTORY_PAGE_SIZE, ge=1, le=100, description="Items per page (max 100)"
    )

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


T = TypeVar("T")


class PaginatedResponse(BaseModel, Generic[T]):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    items: List[T]
    total_items: int
    total_pages: int
    current_page: int
    page_size: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, items: List[T], total_items: int, pagination: PaginationParams):
        total_pages = (total_items + pagination.page_size - 1) // pagination.page_size
        return cls(
            items=items,
            total_items=total_items,
            total_pages=total_pages,
            current_page=pagination.page,
            page_size=pagination.page_size,
            has_next=pagination.page < total_pages,
            has_prev=pagination.page > 1,
        )


def get_pagination_params(
    page: Annotated[int, Query(ge=1, description="Page number (1-based)")] = 1,
    page_size: Annotated[
        int, Query(ge=1, le=100, description="Items per page (max 100)")
    ] = settings.HISTORY_PAGE_SIZE,
) -> PaginationParams:
    return PaginationParams(page=page, page_size=page_size)
