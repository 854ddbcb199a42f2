from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from marketplace.core.permissions import UserRole


# --- Enumerations ---
class OrderStatus(str, Enum):
    UNPAID = "Unpaid"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    FAILED = "Failed"


class PaymentMethod(str, Enum):
    BANK_TRANSFER = "BANK_TRANSFER"
    E_WALLET = "E_WALLET"
    CARD = "CARD"
    QRIS = "QRIS"


class PaymentStatus(str, Enum):
    PENDING = "Pending"
    COMPLETED = "Completed"
    FAILED = "Failed"


class NotificationType(str, Enum):
    ORDER = "order"
    PAYMENT = "payment"
    REVIEW = "review"
    SYSTEM = "system"
    OTHER = "other"


class ProductType(str, Enum):
    SERVICE = "service"
    PRODUCT = "product"


# --- Auth ---
class RegistrationRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6)
    confirmPassword: str


class ActivationRequest(BaseModel):
    activation_token: str
    activation_code: str


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class SocialAuthRequest(BaseModel):
    email: EmailStr
    name: str
    avatar: Optional[str] = None


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class VerifyOtpRequest(BaseModel):
    forgot_token: str
    forgot_code: str


class ResetPasswordRequest(BaseModel):
    reset_token: str
    newPassword: str = Field(..., min_length=6)


class RefreshTokenRequest(BaseModel):
    refresh_token: Optional[str] = None


# --- Users ---
class UpdateUserInfo(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)


class UpdatePassword(BaseModel):
    oldPassword: str
    newPassword: str = Field(..., min_length=6)


class UpdateAvatar(BaseModel):
    avatar: str


class UpdateUserRole(BaseModel):
    email: EmailStr
    role: UserRole


# --- Categories ---
class CategoryPayload(BaseModel):
    name: str = ""


# --- Products ---
class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    category: str
    price: Dict[str, Any]
    image: Optional[str] = None
    thumbnail: Optional[str] = None
    tags: List[str] = Field(..., min_length=1)
    type: ProductType
    specifications: List[str] = []


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    price: Optional[Dict[str, Any]] = None
    image: Optional[str] = None
    thumbnail: Optional[str] = None
    tags: Optional[List[str]] = None
    type: Optional[ProductType] = None
    specifications: Optional[List[str]] = None


# --- Orders ---
class OrderCreate(BaseModel):
    productId: str
    # validated against the product's tiers, not an enum, so the error names the bad value
    packageType: str


class OrderStatusUpdate(BaseModel):
    status: str


class OrderProgressUpdate(BaseModel):
    progress: int


class OrderUpdate(BaseModel):
    status: Optional[str] = None
    progress: Optional[int] = None
    deliveryDate: Optional[datetime] = None


# --- Payments ---
class PaymentCreate(BaseModel):
    orderId: str
    paymentMethod: str
    paymentDetails: Dict[str, Any] = {}
    # Accepted for compatibility, always replaced by the order's stored amounts.
    amountPaid: Optional[float] = None
    serviceFee: Optional[float] = None
    adminFee: Optional[float] = None


class PaymentStatusUpdate(BaseModel):
    paymentStatus: PaymentStatus


class _Details(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")


class BankTransferDetails(_Details):
    bankName: Literal["BRI", "BNI"]
    accountNumber: str = Field(..., min_length=1)
    accountHolderName: str = Field(..., min_length=1)


class EWalletDetails(_Details):
    provider: Literal["DANA", "LinkAja", "ShopeePay", "OVO", "GoPay"]
    phoneNumber: str = Field(..., min_length=1)


class CardDetails(_Details):
    type: Literal["VISA", "Mastercard"]
    lastFourDigits: str = Field(..., min_length=4, max_length=4)
    expiryMonth: int = Field(..., ge=1, le=12)
    expiryYear: int

    @field_validator("lastFourDigits", mode="before")
    @classmethod
    def digits_as_text(cls, v):
        return str(v) if isinstance(v, int) else v

    @field_validator("expiryYear")
    @classmethod
    def not_expired(cls, v: int) -> int:
        if v < datetime.now(timezone.utc).year:
            raise ValueError("card has expired")
        return v


class QRISDetails(_Details):
    merchantName: str = Field(..., min_length=1)


# --- Reviews ---
class ReviewCreate(BaseModel):
    productId: str
    orderId: str
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1)


# --- Notifications ---
class NotificationCreate(BaseModel):
    userId: str
    title: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    type: NotificationType = NotificationType.SYSTEM
    relatedId: Optional[str] = None
