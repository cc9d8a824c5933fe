from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field
from uuid import UUID


class PlaybackTokenRequest(BaseModel):
    lesson_id: UUID
    media_id: Optional[str] = None


class PlaybackTokenResponse(BaseModel):
    credential: str
    media_id: str
    host_domain: str
    expires_in_seconds: int
    expires_at: datetime


class AccessDecisionResponse(BaseModel):
    state: str
    course_id: UUID
    lesson_id: Optional[UUID] = None
    reason: str
    is_preview: bool = False
    media_available: bool = True


class CourseRef(BaseModel):
    course_id: UUID


class PurchaseRecord(BaseModel):
    id: UUID
    user_id: UUID
    course_id: UUID
    amount: int
    status: str
    payment_reference: Optional[str] = None
    created_at: datetime


class FreeEnrollResponse(BaseModel):
    already_enrolled: bool = False
    purchase: Optional[PurchaseRecord] = None


class CheckoutCreateResponse(BaseModel):
    order_reference: str
    url: str
    amount: int


class CheckoutVerifyRequest(BaseModel):
    order_reference: str = Field(min_length=1)
    course_id: UUID


class CartItem(BaseModel):
    id: UUID
    course_id: UUID
    created_at: datetime
    course_title: Optional[str] = None
    course_price: Optional[int] = None


class CartToggleResponse(BaseModel):
    course_id: UUID
    in_cart: bool
    item: Optional[CartItem] = None


class CartListResponse(BaseModel):
    items: List[CartItem]
    total: int


class ProgressRecord(BaseModel):
    lesson_id: UUID
    completed: bool
    completed_at: Optional[datetime] = None
    last_watched_at: Optional[datetime] = None


class CourseProgressResponse(BaseModel):
    course_id: UUID
    completed_lessons: int
    total_lessons: int
    percent: int


class MyCourseItem(BaseModel):
    course_id: UUID
    title: Optional[str] = None
    price: int
    progress: CourseProgressResponse


class RevenueSplitOut(BaseModel):
    total_amount: int
    platform_share: int
    creator_share: int
    sales_count: int = 0


class PublishRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    price: Optional[int] = Field(default=None, ge=0)
    tag_ids: Optional[List[UUID]] = None

    def edits(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class UnpublishRequest(BaseModel):
    confirm: bool = False


class ReadinessResponse(BaseModel):
    course_id: UUID
    state: str
    ready: bool
    missing: List[str]


class CourseRecord(BaseModel):
    id: UUID
    title: str
    description: Optional[str] = None
    price: int
    creator_id: UUID
    is_published: bool
    updated_at: Optional[datetime] = None


class RefundRequest(BaseModel):
    purchase_id: UUID


class EbookRef(BaseModel):
    ebook_id: UUID


class EbookPurchaseRecord(BaseModel):
    id: UUID
    user_id: UUID
    ebook_id: UUID
    amount: int
    status: str
    payment_reference: Optional[str] = None
    download_count: int = 0
    created_at: datetime


class EbookFreeEnrollResponse(BaseModel):
    already_enrolled: bool = False
    purchase: Optional[EbookPurchaseRecord] = None


class EbookCheckoutVerifyRequest(BaseModel):
    order_reference: str = Field(min_length=1)
    ebook_id: UUID


class EbookCartItem(BaseModel):
    id: UUID
    ebook_id: UUID
    created_at: datetime


class EbookCartToggleResponse(BaseModel):
    ebook_id: UUID
    in_cart: bool
    item: Optional[EbookCartItem] = None


class EbookDownloadResponse(BaseModel):
    download_url: str
    expires_at: datetime
    filename: str
    download_count: Optional[int] = None
