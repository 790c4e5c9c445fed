from decimal import Decimal
from datetime import date
from typing import Callable, Union
import logging

from audit_service import AuditService
from beneficiary_service import BeneficiaryService
from donation_service import DonationService
from donor_service import DonorService
from feeding_round_service import FeedingRoundService
from payment_request_service import PaymentRequestService
from payment_service import PaymentService
from treasury_service import TreasuryService
from ledger.financial_precision import BALANCE_EPSILON
from ledger.store import LedgerStore


class LedgerServices:
    """All ledger services sharing one store and one audit trail"""

    def __init__(self, store: LedgerStore, audit: AuditService, treasury: TreasuryService,
                 donors: DonorService, beneficiaries: BeneficiaryService,
                 donations: DonationService, payments: PaymentService,
                 feeding_rounds: FeedingRoundService, payment_requests: PaymentRequestService):
        self.store = store
        self.audit = audit
        self.treasury = treasury
        self.donors = donors
        self.beneficiaries = beneficiaries
        self.donations = donations
        self.payments = payments
        self.feeding_rounds = feeding_rounds
        self.payment_requests = payment_requests


def build_services(
    store: LedgerStore,
    logger: logging.Logger = None,
    tolerance: Union[Decimal, float, str] = BALANCE_EPSILON,
    today: Callable[[], date] = date.today
) -> LedgerServices:
    audit = AuditService(store, logger=logger)
    treasury = TreasuryService(store, audit, logger=logger, tolerance=tolerance)
    donors = DonorService(store, logger=logger)
    beneficiaries = BeneficiaryService(store, logger=logger)
    return LedgerServices(
        store=store,
        audit=audit,
        treasury=treasury,
        donors=donors,
        beneficiaries=beneficiaries,
        donations=DonationService(store, treasury, audit, donors, logger=logger),
        payments=PaymentService(store, treasury, audit, beneficiaries, logger=logger),
        feeding_rounds=FeedingRoundService(store, treasury, audit, logger=logger),
        payment_requests=PaymentRequestService(store, treasury, audit, beneficiaries, logger=logger, today=today),
    )
