"""
Database Schemas for Beauté Store

Each Pydantic model describes the writable fields of one collection.
Fields not declared here are dropped from request bodies, so the models
double as the allowlists used by the create handlers.
"""
from typing import List, Literal, Optional, get_args
from pydantic import BaseModel, Field, EmailStr, field_validator

OrderStatus = Literal["pending", "confirmed", "preparing", "shipped", "delivered", "cancelled"]
ORDER_STATUSES = get_args(OrderStatus)


class Category(BaseModel):
    name: str = Field(..., min_length=1, description="Nom de la catégorie")
    description: Optional[str] = None
    image_url: Optional[str] = None
    order: int = Field(0, description="Ordre d'affichage")


class Product(BaseModel):
    name: str = Field(..., min_length=1, description="Nom du produit")
    description: Optional[str] = None
    short_description: Optional[str] = None
    price: float = Field(0, ge=0, description="Prix en FCFA")
    original_price: float = Field(0, ge=0, description="Prix original (si promo)")
    category_id: Optional[str] = None
    images: List[str] = []
    is_new: bool = False
    is_promo: bool = False
    is_featured: bool = False
    is_available: bool = True
    stock: int = Field(0, ge=0)
    technical_details: Optional[str] = None


class OrderItem(BaseModel):
    product_id: Optional[str] = None
    product_name: Optional[str] = None
    product_image: Optional[str] = None
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)
    total: Optional[float] = None


class Order(BaseModel):
    order_number: Optional[str] = None
    client_name: str = Field(..., min_length=1)
    client_phone: str = Field(..., min_length=1)
    client_email: Optional[EmailStr] = None
    client_address: str = Field(..., min_length=1)
    items: List[OrderItem] = Field(..., min_length=1)
    subtotal: Optional[float] = None
    delivery_fee: Optional[float] = Field(None, ge=0)
    total: Optional[float] = None
    status: OrderStatus = "pending"
    notes: Optional[str] = None
    admin_notes: Optional[str] = None

    @field_validator("client_email", mode="before")
    @classmethod
    def blank_email_is_none(cls, v):
        # the checkout form posts "" when the optional email is left empty
        if isinstance(v, str) and not v.strip():
            return None
        return v


class SiteSettings(BaseModel):
    site_name: Optional[str] = None
    logo_url: Optional[str] = None
    banner_image: Optional[str] = None
    banner_title: Optional[str] = None
    banner_subtitle: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_whatsapp: Optional[str] = None
    contact_email: Optional[str] = None
    contact_address: Optional[str] = None
    facebook_url: Optional[str] = None
    instagram_url: Optional[str] = None
    delivery_fee: float = Field(0, ge=0)
    free_delivery_threshold: float = Field(0, ge=0)
    about_text: Optional[str] = None
    cgv_text: Optional[str] = None
    shipping_policy: Optional[str] = None
    return_policy: Optional[str] = None
    primary_color: str = "#E8B4B8"
    secondary_color: str = "#D4AF37"

