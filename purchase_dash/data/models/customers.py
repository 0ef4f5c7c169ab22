from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Customer(BaseModel):
    """Response model for a customer row of /customers."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: int = Field(description="Unique, server-assigned customer identifier")
    name: str = Field(description="Customer display name")
    count: int = Field(ge=0, description="Total number of purchases")
    total_amount: float = Field(ge=0, alias="totalAmount", description="Total purchase amount")


class CustomerPurchase(BaseModel):
    """Response model for one purchase of a single customer."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    date: str = Field(description="Purchase date (ISO date)")
    product: str = Field(description="Product name")
    price: float = Field(ge=0, description="Purchase price")
    img_src: Optional[str] = Field(default=None, alias="imgSrc", description="Product thumbnail URL")
