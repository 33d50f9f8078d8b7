"""
Cart API Pydantic Models

Request bodies for the cart endpoints. Responses are the read models'
``to_dict()`` output.
"""
from pydantic import BaseModel, Field


# ==================== CART MODELS ====================

class AddToCartRequest(BaseModel):
    product_id: str
    variant_id: str | None = None
    quantity: int = Field(default=1, ge=1)


class UpdateCartItemRequest(BaseModel):
    variant_id: str | None = None
    quantity: int  # 0 removes the item
