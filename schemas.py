"""
Database Schemas for the Best Wishes gifting store

Each Pydantic model corresponds to a MongoDB collection. The collection name is the
snake_case of the class name.

Example: class SurpriseGift -> collection "surprise_gift"

References to other documents are stored as string ids.
"""
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field, EmailStr
from datetime import datetime, timedelta

USER_ROLES = ("user", "admin", "inventory_manager", "delivery_staff")
ORDER_STATUSES = ("Pending", "Processing", "Packing", "Shipped", "Delivered", "Cancelled")
SURPRISE_STATUSES = ("Pending", "Confirmed", "AwaitingPayment", "Paid", "Packing",
                     "OutForDelivery", "Delivered", "Cancelled")
COLLABORATIVE_STATUSES = ("pending", "completed", "cancelled", "expired", "refunded",
                          "packing", "outfordelivery", "delivered")
OCCASIONS = ("birthday", "anniversary", "wedding", "graduation", "baby_shower", "housewarming",
             "valentine_day", "mother_day", "father_day", "christmas", "new_year", "thanksgiving",
             "engagement", "retirement", "promotion", "get_well_soon", "sympathy",
             "congratulations", "thank_you", "general")
QUOTE_CATEGORIES = ("birthday", "anniversary", "love", "friendship", "congratulations",
                    "thank-you", "motivation", "funny", "general")


def three_days_from_now() -> datetime:
    return datetime.utcnow() + timedelta(days=3)


# Users

class User(BaseModel):
    first_name: str
    last_name: str
    email: EmailStr
    hashed_password: str
    phone: Optional[str] = None
    address: Optional[str] = None
    role: str = Field("user", description="user|admin|inventory_manager|delivery_staff")
    two_factor_enabled: bool = False
    is_blocked: bool = False
    profile_image: Optional[str] = None
    reset_password_token: Optional[str] = None
    reset_password_expires: Optional[datetime] = None
    last_login: Optional[datetime] = None
    last_active_at: Optional[datetime] = None

class Otp(BaseModel):
    email: EmailStr
    code_hash: str
    expires_at: datetime

# Catalog

class CategoryAttribute(BaseModel):
    name: str
    display_name: str
    items: List[str] = Field(default_factory=list)

class Category(BaseModel):
    key: str
    name: str
    description: Optional[str] = None
    attributes: List[CategoryAttribute] = Field(default_factory=list)
    icon: Optional[str] = None
    image: Optional[str] = None
    is_active: bool = True
    sort_order: int = 0

class ProductImage(BaseModel):
    id: Optional[str] = None
    url: str
    name: Optional[str] = None
    size: Optional[int] = None

class Product(BaseModel):
    name: str
    sku: str
    short_description: str
    detailed_description: Optional[str] = None
    main_category: Optional[str] = None
    filters: Dict[str, List[str]] = Field(default_factory=dict)
    tags: List[str] = Field(default_factory=list)
    images: List[ProductImage] = Field(default_factory=list)
    videos: List[Dict[str, Any]] = Field(default_factory=list)
    cost_price: float = Field(..., ge=0)
    retail_price: float = Field(..., ge=0)
    sale_price: float = Field(0, ge=0)
    tax_class: str = "standard"
    stock: int = Field(0, ge=0)
    stock_status: str = Field("in-stock", description="in-stock|low-stock|out-of-stock")
    weight: Optional[float] = None
    dimensions: Dict[str, Optional[float]] = Field(default_factory=dict)
    shipping_class: str = "standard"
    variants: List[Dict[str, Any]] = Field(default_factory=list)
    status: str = Field("draft", description="draft|active|archived")
    featured: bool = False
    seo_title: Optional[str] = None
    seo_description: Optional[str] = None
    rating: float = Field(3, ge=0, le=5)
    is_customizable: bool = False
    customization_price: float = Field(0, ge=0)
    customization_type: Optional[str] = Field(None, description="mug|birthday-card|anniversary-card|general-card")
    created_by: Optional[str] = None
    updated_by: Optional[str] = None

# Orders

class OrderItem(BaseModel):
    product_id: str
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(1, ge=1)
    image: Optional[str] = None

class StatusChange(BaseModel):
    status: str
    updated_by: Optional[str] = None
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    notes: Optional[str] = None

class Order(BaseModel):
    user_id: str
    items: List[OrderItem]
    total: float = Field(..., ge=0)
    status: str = Field("Pending", description="Pending|Processing|Packing|Shipped|Delivered|Cancelled")
    shipping_address: Optional[str] = None
    ordered_at: datetime = Field(default_factory=datetime.utcnow)
    updated_by: Optional[str] = None
    status_history: List[StatusChange] = Field(default_factory=list)
    delivery_notes: Optional[str] = None
    tracking_number: Optional[str] = None
    delivery_staff_id: Optional[str] = None
    delivered_at: Optional[datetime] = None
    collaborative_purchase_id: Optional[str] = None

class OrderSummary(BaseModel):
    gift_id: Optional[str] = None
    product_sku: str
    product_id: str
    product_name: str
    quantity: int = Field(..., ge=1)
    cost_price: float = Field(..., ge=0)
    retail_price: float = Field(..., ge=0)
    sale_price: float = Field(0, ge=0)
    profit: float = 0
    total_profit: float = 0
    order_date: datetime = Field(default_factory=datetime.utcnow)
    status: str = Field("order", description="order|orders|surprisegift|collaborative")

# Gifting

class SurpriseGift(BaseModel):
    user_id: str
    recipient_name: str
    recipient_phone: str
    shipping_address: str
    costume: str = Field("none", description="none|mickey|tomjerry|joker")
    suggestions: Optional[str] = None
    items: List[OrderItem] = Field(default_factory=list)
    total: float = Field(0, ge=0)
    status: str = "Pending"
    payment_status: Optional[str] = None
    payment_id: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    packed_at: Optional[datetime] = None
    delivery_staff_id: Optional[str] = None
    delivered_at: Optional[datetime] = None

class CollaborativeParticipant(BaseModel):
    email: EmailStr
    payment_status: str = Field("pending", description="pending|paid|failed|declined|refunded|refund_failed")
    payment_link: str
    paid_at: Optional[datetime] = None
    payment_intent_id: Optional[str] = None
    refund_id: Optional[str] = None
    refund_error: Optional[str] = None

class CollaborativeLine(BaseModel):
    product_id: str
    product_name: str
    product_price: float = Field(..., ge=0)
    quantity: int = Field(1, ge=1)
    subtotal: float = Field(..., ge=0)

class CollaborativePurchase(BaseModel):
    product_id: Optional[str] = None
    product_name: Optional[str] = None
    product_price: Optional[float] = None
    quantity: int = Field(1, ge=1)
    products: List[CollaborativeLine] = Field(default_factory=list)
    is_multi_product: bool = False
    total_amount: float = Field(..., ge=0)
    share_amount: float = Field(..., ge=0)
    created_by: str
    participants: List[CollaborativeParticipant] = Field(..., min_length=1, max_length=3)
    status: str = "pending"
    deadline: datetime = Field(default_factory=three_days_from_now)
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    refund_pending: bool = False
    order_id: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    packed_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    delivery_staff_id: Optional[str] = None

class ContributionParticipant(BaseModel):
    email: EmailStr
    has_paid: bool = False
    paid_at: Optional[datetime] = None
    payment_link: str
    declined: bool = False

class GiftContribution(BaseModel):
    product_id: str
    product_name: str
    product_price: float = Field(..., ge=0)
    share: float = Field(..., ge=0)
    created_by: str
    participants: List[ContributionParticipant] = Field(..., min_length=1, max_length=3)
    status: str = Field("pending", description="pending|completed|cancelled|expired")
    deadline: datetime = Field(default_factory=three_days_from_now)

# Engagement

class Notification(BaseModel):
    user_id: str
    title: str
    message: str
    type: str = Field("order", description="order|system|promotion|reminder|gift")
    is_read: bool = False
    related_id: Optional[str] = None
    related_model: Optional[str] = None
    priority: str = Field("medium", description="low|medium|high")
    action_url: Optional[str] = None

class Feedback(BaseModel):
    user_id: str
    product_id: str
    order_id: str
    rating: int = Field(..., ge=1, le=5)
    title: Optional[str] = Field(None, max_length=100)
    comment: str = Field(..., min_length=1, max_length=1000)
    images: List[str] = Field(default_factory=list)
    is_verified_purchase: bool = True
    likes: int = 0
    dislikes: int = 0
    is_edited: bool = False
    edited_at: Optional[datetime] = None
    status: str = Field("active", description="active|hidden|reported")

class SelectedQuote(BaseModel):
    id: Optional[str] = None
    text: str
    category: Optional[str] = None

class Customization(BaseModel):
    product_id: str
    user_id: str
    order_id: Optional[str] = None
    customization_type: str = Field(..., description="mug|birthday-card|anniversary-card|general-card")
    selected_quote: Optional[SelectedQuote] = None
    custom_message: Optional[str] = Field(None, max_length=500)
    font_style: str = "Arial"
    font_size: int = 14
    font_color: str = "#000000"
    text_position: Dict[str, Any] = Field(default_factory=lambda: {"x": 50, "y": 50, "alignment": "center"})
    background_color: str = "#FFFFFF"
    additional_images: List[str] = Field(default_factory=list)
    preview_image: Optional[str] = None
    price: float = Field(0, ge=0)
    status: str = Field("draft", description="draft|confirmed|in-production|completed|cancelled")
    special_instructions: Optional[str] = Field(None, max_length=1000)

class Quote(BaseModel):
    text: str = Field(..., max_length=200)
    category: str
    type: str = Field("both", description="mug|card|both")
    tags: List[str] = Field(default_factory=list)
    is_active: bool = True
    usage_count: int = 0

class UpcomingEvent(BaseModel):
    name: str
    description: str
    date: datetime
    image: Optional[str] = None
    is_active: bool = True
    featured: bool = False

class EventReminder(BaseModel):
    user_id: str
    remindermsg: str
    date: datetime
    event: str
    occasion: str = "general"
    time: str = Field(..., pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    sent: bool = False

class HeroSection(BaseModel):
    title: str
    description: str
    image: str
    image_public_id: str
    is_active: bool = True
    order: int = 0
