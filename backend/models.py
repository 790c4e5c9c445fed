from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from enum import Enum


# ============================================
# STATUS / TYPE ENUMS
# ============================================
class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PaymentType(str, Enum):
    ONE_TIME = "ONE_TIME"
    SEASONAL = "SEASONAL"
    RECURRING = "RECURRING"


class Frequency(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class FeedingRoundStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PaymentRequestStatus(str, Enum):
    CREATED = "CREATED"
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"


class TransactionType(str, Enum):
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"
    STATUS_UPDATE = "STATUS_UPDATE"


class SupportType(str, Enum):
    MEDICAL = "MEDICAL"
    EDUCATION = "EDUCATION"
    FOOD = "FOOD"
    HOUSING = "HOUSING"
    EMERGENCY = "EMERGENCY"


class BeneficiaryStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class LedgerDocument(BaseModel):
    """Base for stored documents: enums are stored as plain strings"""
    id: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.utcnow())
    updated_at: datetime = Field(default_factory=lambda: datetime.utcnow())

    class Config:
        use_enum_values = True

    def to_document(self) -> dict:
        doc = self.model_dump()
        if doc.get("id") is None:
            doc.pop("id")
        return doc


# ============================================
# TREASURY CATEGORY
# ============================================
class TreasuryCategory(LedgerDocument):
    name: str
    balance: float = 0.0  # Never negative
    funded_balance: float = 0.0  # Balance with all payment movements reversed
    description: Optional[str] = None


class TreasuryCategoryCreate(BaseModel):
    name: str = Field(min_length=1)
    balance: float = 0.0
    description: Optional[str] = None


class TreasuryCategoryUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None

    class Config:
        extra = "allow"  # forbidden fields reach the service and are rejected there


class BalanceAdjustment(BaseModel):
    amount: float
    is_deduction: bool = False


# ============================================
# DONOR / BENEFICIARY REGISTRIES
# ============================================
class Donor(LedgerDocument):
    name: str
    contact: Optional[str] = None  # email, phone or both


class DonorCreate(BaseModel):
    name: str = Field(min_length=1)
    contact: Optional[str] = None


class DonorUpdate(BaseModel):
    name: Optional[str] = None
    contact: Optional[str] = None

    class Config:
        extra = "allow"


class Beneficiary(LedgerDocument):
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    support_type: SupportType = SupportType.FOOD
    status: BeneficiaryStatus = BeneficiaryStatus.ACTIVE  # Deleting only deactivates


class BeneficiaryCreate(BaseModel):
    name: str = Field(min_length=1)
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    support_type: SupportType = SupportType.FOOD


class BeneficiaryUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    support_type: Optional[SupportType] = None

    class Config:
        extra = "allow"


# ============================================
# DONATION
# ============================================
class Donation(LedgerDocument):
    donor_id: str
    amount: float  # Must be > 0
    purpose: str
    category_id: str
    date: str  # YYYY-MM-DD


class DonationCreate(BaseModel):
    donor_id: str
    amount: float
    purpose: str = ""
    category_id: str
    date: str


class DonationUpdate(BaseModel):
    donor_id: Optional[str] = None
    amount: Optional[float] = None
    purpose: Optional[str] = None
    category_id: Optional[str] = None
    date: Optional[str] = None

    class Config:
        extra = "allow"


# ============================================
# PAYMENT
# ============================================
class Payment(LedgerDocument):
    beneficiary_id: str
    category_id: str
    amount: float  # Must be > 0
    date: str  # YYYY-MM-DD
    payment_type: PaymentType = PaymentType.ONE_TIME
    status: PaymentStatus = PaymentStatus.PENDING
    representative_id: str
    notes: Optional[str] = None
    description: Optional[str] = None
    frequency: Optional[Frequency] = None
    total_repetitions: Optional[int] = None
    repetition_number: Optional[int] = None
    payment_request_id: Optional[str] = None
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[str] = None


class PaymentCreate(BaseModel):
    beneficiary_id: str
    category_id: str
    amount: float
    date: str
    payment_type: PaymentType = PaymentType.ONE_TIME
    representative_id: str
    notes: Optional[str] = None
    description: Optional[str] = None
    frequency: Optional[Frequency] = None
    total_repetitions: Optional[int] = None
    # Debit now and store COMPLETED; False stores PENDING (debited on completion)
    complete_immediately: bool = True


class PaymentStatusUpdate(BaseModel):
    status: PaymentStatus


class PaymentUpdate(BaseModel):
    beneficiary_id: Optional[str] = None
    category_id: Optional[str] = None
    amount: Optional[float] = None
    date: Optional[str] = None
    payment_type: Optional[PaymentType] = None
    representative_id: Optional[str] = None
    notes: Optional[str] = None
    description: Optional[str] = None

    class Config:
        extra = "allow"


# ============================================
# FEEDING ROUND
# ============================================
class FeedingRound(LedgerDocument):
    date: str  # YYYY-MM-DD
    status: FeedingRoundStatus = FeedingRoundStatus.PENDING
    allocated_amount: float  # Must be > 0
    unit_price: float  # Must be > 0
    category_id: str
    description: Optional[str] = None
    observations: Optional[str] = None
    special_circumstances: Optional[str] = None
    drive_link: Optional[str] = None


class FeedingRoundCreate(BaseModel):
    date: str
    allocated_amount: float
    unit_price: float
    category_id: str
    description: Optional[str] = None
    observations: Optional[str] = None
    special_circumstances: Optional[str] = None
    drive_link: Optional[str] = None


class FeedingRoundStatusUpdate(BaseModel):
    status: FeedingRoundStatus


class FeedingRoundUpdate(BaseModel):
    date: Optional[str] = None
    unit_price: Optional[float] = None
    description: Optional[str] = None
    observations: Optional[str] = None
    special_circumstances: Optional[str] = None
    drive_link: Optional[str] = None

    class Config:
        extra = "allow"


class DriveLinkUpdate(BaseModel):
    drive_link: str = Field(min_length=1)


# ============================================
# PAYMENT REQUEST
# ============================================
class PaymentRequest(LedgerDocument):
    beneficiary_id: str
    category_id: str
    amount: float  # Must be > 0
    start_date: str  # YYYY-MM-DD
    payment_type: PaymentType = PaymentType.ONE_TIME
    frequency: Optional[Frequency] = None
    notes: Optional[str] = None
    description: Optional[str] = None
    status: PaymentRequestStatus = PaymentRequestStatus.CREATED
    payment_id: Optional[str] = None


class PaymentRequestCreate(BaseModel):
    beneficiary_id: str
    category_id: str
    amount: float
    start_date: str
    payment_type: PaymentType = PaymentType.ONE_TIME
    frequency: Optional[Frequency] = None
    notes: Optional[str] = None
    description: Optional[str] = None


class PaymentRequestUpdate(BaseModel):
    beneficiary_id: Optional[str] = None
    amount: Optional[float] = None
    start_date: Optional[str] = None
    payment_type: Optional[PaymentType] = None
    frequency: Optional[Frequency] = None
    notes: Optional[str] = None
    description: Optional[str] = None

    class Config:
        extra = "allow"


class PaymentRequestStatusUpdate(BaseModel):
    status: PaymentRequestStatus


class PaymentRequestBulkStatusUpdate(BaseModel):
    ids: List[str]
    status: PaymentRequestStatus


# ============================================
# TRANSACTION (AUDIT TRAIL)
# ============================================
class LedgerTransactionRecord(LedgerDocument):
    type: TransactionType
    amount: float
    description: str
    category: str  # Free-text tag, e.g. PAYMENT_COMPLETED
    reference: str  # Id of the source entity
    category_id: Optional[str] = None
    status: str = "COMPLETED"
