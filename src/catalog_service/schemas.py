from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator

MAX_PAGE_SIZE = 100
# Keeps page * limit within a signed 64-bit offset
MAX_PAGE = (2 ** 63 - 1) // MAX_PAGE_SIZE


class PriceRange(BaseModel):
    """Inclusive price bounds"""
    model_config = ConfigDict(extra="forbid", frozen=True)

    min: float = Field(..., ge=0, description="Lowest accepted price")
    max: float = Field(..., ge=0, description="Highest accepted price")

    @model_validator(mode="after")
    def check_bounds(self):
        if self.min > self.max:
            raise ValueError("price range min must not exceed max")
        return self


class ProductFilter(BaseModel):
    """
    Product query filter. A field left as None places no constraint on
    that attribute; it does not mean "match the default value".
    """
    model_config = ConfigDict(extra="forbid", frozen=True)

    category: Optional[str] = Field(None, description="Exact category match")
    is_active: Optional[bool] = Field(None, description="Active status")
    is_wishlist_status: Optional[bool] = Field(None, description="Wishlist status")
    search: Optional[str] = Field(None, description="Free text over name and description")
    price_range: Optional[PriceRange] = None

    @field_validator("category", "search")
    @classmethod
    def blank_is_unset(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None


class Pagination(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    page: int = Field(1, ge=1, le=MAX_PAGE, description="1-based page number")
    limit: int = Field(10, ge=1, le=MAX_PAGE_SIZE, description="Page size")

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


class ProductCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    stock: int = Field(..., ge=0)
    category: str = Field(..., min_length=1, max_length=100)
    images: List[str] = Field(default_factory=list)
    is_active: bool = True
    is_wishlist_status: bool = False
    wishlist_count: int = Field(0, ge=0)


class ProductUpdate(BaseModel):
    """Partial update: only the fields that were explicitly set are applied."""
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    category: Optional[str] = Field(None, min_length=1, max_length=100)
    images: Optional[List[str]] = None
    is_active: Optional[bool] = None
    is_wishlist_status: Optional[bool] = None
    wishlist_count: Optional[int] = Field(None, ge=0)

    @model_validator(mode="after")
    def reject_null_fields(self):
        nulls = [name for name in self.model_fields_set if getattr(self, name) is None]
        if nulls:
            raise ValueError(f"fields cannot be null: {', '.join(sorted(nulls))}")
        return self

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


class WishlistToggle(BaseModel):
    is_wishlist_status: bool


class Product(BaseModel):
    """Product record as persisted and cached"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: str
    price: float = Field(..., ge=0)
    stock: int = Field(..., ge=0)
    category: str
    images: List[str] = Field(default_factory=list)
    is_active: bool = True
    is_wishlist_status: bool = False
    wishlist_count: int = Field(0, ge=0)
    created_at: datetime
    updated_at: datetime

    @computed_field
    @property
    def effective_stock(self) -> int:
        return self.stock if self.is_active else 0

    @property
    def is_available(self) -> bool:
        return self.effective_stock > 0


class ProductPage(BaseModel):
    items: List[Product]
    total: int
    page: int
    limit: int
    total_pages: int


class ProductCount(BaseModel):
    count: int
