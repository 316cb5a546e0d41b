"""Data models for catalog items."""
from typing import Optional
from pydantic import BaseModel, Field


class Variant(BaseModel):
    """A purchasable variant of a catalog item."""

    id: str
    title: str = ""
    price: float = 0.0
    sku: Optional[str] = None
    available: bool = False
    inventory_quantity: int = 0


class Image(BaseModel):
    """An image attached to a catalog item."""

    id: str
    src: str
    alt: Optional[str] = None
    width: int = 0
    height: int = 0


class CatalogItem(BaseModel):
    """Normalized catalog item as stored and broadcast."""

    id: str = Field(..., description="Stable storefront identifier (primary key)")
    title: str
    handle: str
    price: float = Field(default=0.0, description="Minimum price across variants")
    compare_at_price: Optional[float] = None
    available: bool = Field(default=False, description="True if any variant has stock")
    variants: list[Variant] = Field(default_factory=list)
    images: list[Image] = Field(default_factory=list)
    description: Optional[str] = None
    url: str = ""
    first_seen_at: Optional[int] = Field(default=None, description="Epoch ms of first persistence")
    last_seen_at: Optional[int] = Field(default=None, description="Epoch ms of latest observation")

    def highest_price(self) -> float:
        """Highest price across the item and its variants."""
        return max([self.price, *(v.price for v in self.variants)])

    def available_variants(self) -> list[Variant]:
        return [v for v in self.variants if v.available]
