from fastapi import FastAPI, APIRouter, HTTPException, Request, status, Depends
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorClient
from bson import ObjectId
import logging
from typing import Optional, Dict, Any
from datetime import datetime

from config import settings, configure_logging
from auth import get_current_user
from ledger.errors import (
    LedgerError, NotFoundError, InvalidAmountError, ValidationRequiredError, InvalidFieldError
)
from ledger.store import MongoLedgerStore
from models import (
    TreasuryCategoryCreate, TreasuryCategoryUpdate, BalanceAdjustment,
    DonorCreate, DonorUpdate, BeneficiaryCreate, BeneficiaryUpdate, BeneficiaryStatus,
    DonationCreate, DonationUpdate,
    PaymentCreate, PaymentUpdate, PaymentStatusUpdate, PaymentStatus,
    FeedingRoundCreate, FeedingRoundUpdate, FeedingRoundStatusUpdate, FeedingRoundStatus, DriveLinkUpdate,
    PaymentRequestCreate, PaymentRequestUpdate, PaymentRequestStatusUpdate,
    PaymentRequestBulkStatusUpdate, PaymentRequestStatus,
    TransactionType
)
from services import LedgerServices, build_services


def serialize_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Serialize a ledger document for JSON response (handles ObjectId, datetime)"""
    if doc is None:
        return None
    result = {}
    for key, value in doc.items():
        if isinstance(value, ObjectId):
            result[key] = str(value)
        elif isinstance(value, datetime):
            result[key] = value.isoformat()
        elif isinstance(value, dict):
            result[key] = serialize_doc(value)
        elif isinstance(value, list):
            result[key] = [serialize_doc(item) if isinstance(item, dict) else item for item in value]
        else:
            result[key] = value
    return result


def serialize_page(page: Dict[str, Any], key: str) -> Dict[str, Any]:
    """Page of documents plus the id to pass back as after_id"""
    last_doc = page["last_doc"]
    return {
        key: [serialize_doc(doc) for doc in page[key]],
        "next_after_id": last_doc["id"] if last_doc else None
    }


# Configure logging
configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

# Create the main app
app = FastAPI(
    title="Charity Treasury Ledger",
    version="1.0.0",
    description="Donations, payments and feeding rounds over per-category treasury balances"
)

# Create router with /api prefix
api_router = APIRouter(prefix="/api")


def get_services(request: Request) -> LedgerServices:
    return request.app.state.services


# ============================================
# ERROR MAPPING
# ============================================

def error_status_code(error: LedgerError) -> int:
    if isinstance(error, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(error, (InvalidAmountError, ValidationRequiredError, InvalidFieldError)):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    # Insufficient funds, invalid transitions and every other rule conflict
    return status.HTTP_409_CONFLICT


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    status_code = error_status_code(exc)
    logger.warning(f"[API] {request.method} {request.url.path} -> {status_code} {exc.error_type}: {exc.message}")
    body = exc.to_dict()
    body["detail"] = exc.message
    return JSONResponse(status_code=status_code, content=body)


# ============================================
# TREASURY CATEGORIES
# ============================================

@api_router.get("/categories")
async def list_categories(services: LedgerServices = Depends(get_services)):
    categories = await services.treasury.list_categories()
    return [serialize_doc(c) for c in categories]


@api_router.post("/categories", status_code=status.HTTP_201_CREATED)
async def create_category(
    category_data: TreasuryCategoryCreate,
    current_user: dict = Depends(get_current_user),
    services: LedgerServices = Depends(get_services)
):
    category = await services.treasury.create_category(
        name=category_data.name,
        balance=category_data.balance,
        description=category_data.description
    )
    return serialize_doc(category)


@api_router.get("/categories/{category_id}")
async def get_category(category_id: str, services: LedgerServices = Depends(get_services)):
    return serialize_doc(await services.treasury.get_category(category_id))


@api_router.patch("/categories/{category_id}")
async def update_category(
    category_id: str,
    category_data: TreasuryCategoryUpdate,
    current_user: dict = Depends(get_current_user),
    services: LedgerServices = Depends(get_services)
):
    category = await services.treasury.update_category(
        category_id, category_data.model_dump(exclude_unset=True)
    )
    return serialize_doc(category)


@api_router.delete("/categories/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_category(
    category_id: str,
    current_user: dict = Depends(get_current_user),
    services: LedgerServices = Depends(get_services)
):
    await services.treasury.delete_category(category_id)


@api_router.post("/categories/{category_id}/adjust")
async def adjust_category_balance(
    category_id: str,
    adjustment: BalanceAdjustment,
    current_user: dict = Depends(get_current_user),
    services: LedgerServices = Depends(get_services)
):
    """Manual balance correction"""
    category = await services.treasury.adjust_balance(
        category_id, adjustment.amount, is_deduction=adjustment.is_deduction
    )
    return serialize_doc(category)


# ============================================
# DONORS
# ============================================

@api_router.get("/donors")
async def list_donors(services: LedgerServices = Depends(get_services)):
    donors = await services.donors.list_donors()
    return [serialize_doc(d) for d in donors]


@api_router.post("/donors", status_code=status.HTTP_201_CREATED)
async def create_donor(
    donor_data: DonorCreate,
    current_user: dict = Depends(get_current_user),
    services: LedgerServices = Depends(get_services)
):
    return serialize_doc(await services.donors.create_donor(donor_data))


@api_router.get("/donors/{donor_id}")
async def get_donor(donor_id: str, services: LedgerServices = Depends(get_services)):
    return serialize_doc(await services.donors.get_donor(donor_id))


@api_router.patch("/donors/{donor_id}")
async def update_donor(
    donor_id: str,
    donor_data: DonorUpdate,
    current_user: dict = Depends(get_current_user),
    services: LedgerServices = Depends(get_services)
):
    donor = await services.donors.update_donor(donor_id, donor_data.model_dump(exclude_unset=True))
    return serialize_doc(donor)


@api_router.delete("/donors/{donor_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_donor(
    donor_id: str,
    current_user: dict = Depends(get_current_user),
    services: LedgerServices = Depends(get_services)
):
    await services.donors.delete_donor(donor_id)


# ============================================
# BENEFICIARIES
# ============================================

@api_router.get("/beneficiaries")
async def list_beneficiaries(
    status: Optional[BeneficiaryStatus] = None,
    services: LedgerServices = Depends(get_services)
):
    beneficiaries = await services.beneficiaries.list_beneficiaries(status=status)
    return [serialize_doc(b) for b in beneficiaries]


@api_router.post("/beneficiaries", status_code=status.HTTP_201_CREATED)
async def create_beneficiary(
    beneficiary_data: BeneficiaryCreate,
    current_user: dict = Depends(get_current_user),
    services: LedgerServices = Depends(get_services)
):
    return serialize_doc(await services.beneficiaries.create_beneficiary(beneficiary_data))


@api_router.get("/beneficiaries/{beneficiary_id}")
async def get_beneficiary(beneficiary_id: str, services: LedgerServices = Depends(get_services)):
    return serialize_doc(await services.beneficiaries.get_beneficiary(beneficiary_id))


@api_router.patch("/beneficiaries/{beneficiary_id}")
async def update_beneficiary(
    beneficiary_id: str,
    beneficiary_data: BeneficiaryUpdate,
    current_user: dict = Depends(get_current_user),
    services: LedgerServices = Depends(get_services)
):
    beneficiary = await services.beneficiaries.update_beneficiary(
        beneficiary_id, beneficiary_data.model_dump(exclude_unset=True)
    )
    return serialize_doc(beneficiary)


@api_router.delete("/beneficiaries/{beneficiary_id}")
async def delete_beneficiary(
    beneficiary_id: str,
    current_user: dict = Depends(get_current_user),
    services: LedgerServices = Depends(get_services)
):
    """Deactivate; payments keep pointing at the record"""
    return serialize_doc(await services.beneficiaries.deactivate_beneficiary(beneficiary_id))


# ============================================
# DONATIONS
# ============================================

@api_router.get("/donations")
async def list_donations(
    page_size: Optional[int] = None,
    after_id: Optional[str] = None,
    services: LedgerServices = Depends(get_services)
):
    start_after = await services.donations.get_donation(after_id) if after_id else None
    page = await services.donations.list_donations(
        page_size=page_size or settings.default_page_size,
        start_after=start_after
    )
    return serialize_page(page, "donations")


@api_router.post("/donations", status_code=status.HTTP_201_CREATED)
async def create_donation(
    donation_data: DonationCreate,
    current_user: dict = Depends(get_current_user),
    services: LedgerServices = Depends(get_services)
):
    donation = await services.donations.create_donation(
        donor_id=donation_data.donor_id,
        amount=donation_data.amount,
        purpose=donation_data.purpose,
        category_id=donation_data.category_id,
        date=donation_data.date
    )
    return serialize_doc(donation)


@api_router.get("/donations/{donation_id}")
async def get_donation(donation_id: str, services: LedgerServices = Depends(get_services)):
    return serialize_doc(await services.donations.get_donation(donation_id))


@api_router.patch("/donations/{donation_id}")
async def update_donation(
    donation_id: str,
    donation_data: DonationUpdate,
    current_user: dict = Depends(get_current_user),
    services: LedgerServices = Depends(get_services)
):
    donation = await services.donations.update_donation(
        donation_id, donation_data.model_dump(exclude_unset=True)
    )
    return serialize_doc(donation)


@api_router.delete("/donations/{donation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_donation(
    donation_id: str,
    current_user: dict = Depends(get_current_user),
    services: LedgerServices = Depends(get_services)
):
    await services.donations.delete_donation(donation_id)


# ============================================
# PAYMENTS
# ============================================

@api_router.get("/payments")
async def list_payments(
    page_size: Optional[int] = None,
    after_id: Optional[str] = None,
    status: Optional[PaymentStatus] = None,
    include_deleted: bool = False,
    services: LedgerServices = Depends(get_services)
):
    start_after = await services.payments.get_payment(after_id) if after_id else None
    page = await services.payments.list_payments(
        page_size=page_size or settings.default_page_size,
        start_after=start_after,
        status=status,
        include_deleted=include_deleted
    )
    return serialize_page(page, "payments")


@api_router.post("/payments", status_code=status.HTTP_201_CREATED)
async def create_payment(
    payment_data: PaymentCreate,
    current_user: dict = Depends(get_current_user),
    services: LedgerServices = Depends(get_services)
):
    """Create a payment; RECURRING payments return the list of installments"""
    created = await services.payments.create_payment(payment_data)
    if isinstance(created, list):
        return [serialize_doc(p) for p in created]
    return serialize_doc(created)


@api_router.get("/payments/{payment_id}")
async def get_payment(payment_id: str, services: LedgerServices = Depends(get_services)):
    return serialize_doc(await services.payments.get_payment(payment_id))


@api_router.patch("/payments/{payment_id}")
async def update_payment(
    payment_id: str,
    payment_data: PaymentUpdate,
    current_user: dict = Depends(get_current_user),
    services: LedgerServices = Depends(get_services)
):
    payment = await services.payments.update_payment(
        payment_id, payment_data.model_dump(exclude_unset=True)
    )
    return serialize_doc(payment)


@api_router.post("/payments/{payment_id}/status")
async def update_payment_status(
    payment_id: str,
    status_data: PaymentStatusUpdate,
    current_user: dict = Depends(get_current_user),
    services: LedgerServices = Depends(get_services)
):
    payment = await services.payments.update_payment_status(payment_id, status_data.status)
    return serialize_doc(payment)


@api_router.post("/payments/{payment_id}/cancel")
async def cancel_payment(
    payment_id: str,
    current_user: dict = Depends(get_current_user),
    services: LedgerServices = Depends(get_services)
):
    return serialize_doc(await services.payments.cancel_payment(payment_id))


@api_router.delete("/payments/{payment_id}")
async def delete_payment(
    payment_id: str,
    current_user: dict = Depends(get_current_user),
    services: LedgerServices = Depends(get_services)
):
    """Soft delete; the acting user is recorded as deleted_by"""
    payment = await services.payments.delete_payment(payment_id, current_user["user_id"])
    return serialize_doc(payment)


# ============================================
# FEEDING ROUNDS
# ============================================

@api_router.get("/feeding-rounds")
async def list_feeding_rounds(
    page_size: Optional[int] = None,
    after_id: Optional[str] = None,
    status: Optional[FeedingRoundStatus] = None,
    services: LedgerServices = Depends(get_services)
):
    start_after = await services.feeding_rounds.get_round(after_id) if after_id else None
    page = await services.feeding_rounds.list_rounds(
        page_size=page_size or settings.default_page_size,
        start_after=start_after,
        status=status
    )
    return serialize_page(page, "rounds")


@api_router.post("/feeding-rounds", status_code=status.HTTP_201_CREATED)
async def create_feeding_round(
    round_data: FeedingRoundCreate,
    current_user: dict = Depends(get_current_user),
    services: LedgerServices = Depends(get_services)
):
    return serialize_doc(await services.feeding_rounds.create_round(round_data))


@api_router.get("/feeding-rounds/{round_id}")
async def get_feeding_round(round_id: str, services: LedgerServices = Depends(get_services)):
    return serialize_doc(await services.feeding_rounds.get_round(round_id))


@api_router.patch("/feeding-rounds/{round_id}")
async def update_feeding_round(
    round_id: str,
    round_data: FeedingRoundUpdate,
    current_user: dict = Depends(get_current_user),
    services: LedgerServices = Depends(get_services)
):
    round_doc = await services.feeding_rounds.update_round(
        round_id, round_data.model_dump(exclude_unset=True)
    )
    return serialize_doc(round_doc)


@api_router.post("/feeding-rounds/{round_id}/status")
async def update_feeding_round_status(
    round_id: str,
    status_data: FeedingRoundStatusUpdate,
    current_user: dict = Depends(get_current_user),
    services: LedgerServices = Depends(get_services)
):
    round_doc = await services.feeding_rounds.update_round_status(round_id, status_data.status)
    return serialize_doc(round_doc)


@api_router.delete("/feeding-rounds/{round_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_feeding_round(
    round_id: str,
    current_user: dict = Depends(get_current_user),
    services: LedgerServices = Depends(get_services)
):
    await services.feeding_rounds.delete_round(round_id)


@api_router.put("/feeding-rounds/{round_id}/drive-link")
async def attach_drive_link(
    round_id: str,
    link_data: DriveLinkUpdate,
    current_user: dict = Depends(get_current_user),
    services: LedgerServices = Depends(get_services)
):
    round_doc = await services.feeding_rounds.attach_photo_link(round_id, link_data.drive_link)
    return serialize_doc(round_doc)


@api_router.delete("/feeding-rounds/{round_id}/drive-link")
async def remove_drive_link(
    round_id: str,
    current_user: dict = Depends(get_current_user),
    services: LedgerServices = Depends(get_services)
):
    return serialize_doc(await services.feeding_rounds.remove_photo_link(round_id))


# ============================================
# PAYMENT REQUESTS
# ============================================

@api_router.get("/payment-requests")
async def list_payment_requests(
    status: Optional[PaymentRequestStatus] = None,
    services: LedgerServices = Depends(get_services)
):
    requests = await services.payment_requests.list_requests(status=status)
    return [serialize_doc(r) for r in requests]


@api_router.post("/payment-requests", status_code=status.HTTP_201_CREATED)
async def create_payment_request(
    request_data: PaymentRequestCreate,
    current_user: dict = Depends(get_current_user),
    services: LedgerServices = Depends(get_services)
):
    return serialize_doc(await services.payment_requests.create_request(request_data))


@api_router.post("/payment-requests/bulk-status")
async def bulk_update_payment_request_status(
    bulk_data: PaymentRequestBulkStatusUpdate,
    current_user: dict = Depends(get_current_user),
    services: LedgerServices = Depends(get_services)
):
    updated = await services.payment_requests.bulk_update_status(bulk_data.ids, bulk_data.status)
    return [serialize_doc(r) for r in updated]


@api_router.patch("/payment-requests/{request_id}")
async def update_payment_request(
    request_id: str,
    request_data: PaymentRequestUpdate,
    current_user: dict = Depends(get_current_user),
    services: LedgerServices = Depends(get_services)
):
    request_doc = await services.payment_requests.update_request(
        request_id, request_data.model_dump(exclude_unset=True)
    )
    return serialize_doc(request_doc)


@api_router.post("/payment-requests/{request_id}/status")
async def update_payment_request_status(
    request_id: str,
    status_data: PaymentRequestStatusUpdate,
    current_user: dict = Depends(get_current_user),
    services: LedgerServices = Depends(get_services)
):
    request_doc = await services.payment_requests.update_request_status(request_id, status_data.status)
    return serialize_doc(request_doc)


# ============================================
# TRANSACTIONS & RECONCILIATION
# ============================================

@api_router.get("/transactions")
async def list_transactions(
    page_size: Optional[int] = None,
    after_id: Optional[str] = None,
    type: Optional[TransactionType] = None,
    services: LedgerServices = Depends(get_services)
):
    start_after = None
    if after_id:
        start_after = await services.audit.get_transaction(after_id)
        if start_after is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Transaction not found")
    page = await services.audit.get_transactions(
        page_size=page_size or settings.default_page_size,
        start_after=start_after,
        type=type
    )
    return serialize_page(page, "transactions")


@api_router.get("/treasury/validate")
async def validate_treasury(services: LedgerServices = Depends(get_services)):
    """Reconcile completed payments against category balances (report only)"""
    report = await services.treasury.validate_treasury_payments()
    return serialize_doc(report)


@api_router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow(),
        "version": "1.0.0"
    }


# Include router in main app
app.include_router(api_router)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_db_client():
    # Services may already be wired (e.g. by tests)
    if getattr(app.state, "services", None) is not None:
        return
    client = AsyncIOMotorClient(settings.mongo_url)
    app.state.mongo_client = client
    app.state.services = build_services(
        MongoLedgerStore(client, client[settings.db_name]),
        tolerance=settings.reconciliation_tolerance
    )
    logger.info(f"[STARTUP] Connected to {settings.db_name}")


@app.on_event("shutdown")
async def shutdown_db_client():
    client = getattr(app.state, "mongo_client", None)
    if client is not None:
        client.close()
