from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    code = "SERVICE_ERROR"

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _period(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


# --- Voucher generation ---
class NoFeeStructure(ServiceError):
    code = "NO_FEE_STRUCTURE"

    def __init__(self, student_id: UUID, class_id: UUID, academic_year_id: UUID, year: int, month: int) -> None:
        super().__init__(
            f"No fee structure configured for class {class_id} in academic year {academic_year_id}; "
            f"cannot generate voucher for student {student_id} for {_period(year, month)}",
            status.HTTP_400_BAD_REQUEST,
        )
        self.student_id = student_id
        self.class_id = class_id
        self.academic_year_id = academic_year_id
        self.year = year
        self.month = month


class StudentNotEnrolled(ServiceError):
    code = "STUDENT_NOT_ENROLLED"

    def __init__(self, student_id: UUID, academic_year_id: UUID, year: int, month: int) -> None:
        super().__init__(
            f"Student {student_id} has no active enrollment in academic year {academic_year_id}; "
            f"cannot generate voucher for {_period(year, month)}",
            status.HTTP_400_BAD_REQUEST,
        )
        self.student_id = student_id
        self.academic_year_id = academic_year_id
        self.year = year
        self.month = month


class DuplicatePeriod(ServiceError):
    code = "DUPLICATE_PERIOD"

    def __init__(self, student_id: UUID, year: int, month: int, voucher_number: Optional[str] = None) -> None:
        existing = f" (voucher {voucher_number})" if voucher_number else ""
        super().__init__(
            f"Student {student_id} already has a voucher for {_period(year, month)}{existing}",
            status.HTTP_409_CONFLICT,
        )
        self.student_id = student_id
        self.year = year
        self.month = month
        self.voucher_number = voucher_number


class PeriodOutOfSequence(ServiceError):
    code = "PERIOD_OUT_OF_SEQUENCE"

    def __init__(self, student_id: UUID, year: int, month: int, latest_year: int, latest_month: int) -> None:
        super().__init__(
            f"Cannot generate voucher for student {student_id} for {_period(year, month)}: "
            f"a later voucher already exists for {_period(latest_year, latest_month)}",
            status.HTTP_409_CONFLICT,
        )
        self.student_id = student_id
        self.year = year
        self.month = month
        self.latest_year = latest_year
        self.latest_month = latest_month


# --- Payments ---
class InvalidPaymentAmount(ServiceError):
    code = "INVALID_PAYMENT_AMOUNT"

    def __init__(
        self,
        voucher_number: str,
        amount: Optional[Decimal],
        total_due: Decimal,
        remaining_amount: Decimal,
        reason: str = "must be greater than zero",
    ) -> None:
        super().__init__(
            f"Payment amount {reason} (got {amount}) for voucher {voucher_number}: total due is {total_due}, "
            f"remaining amount is {remaining_amount}",
            status.HTTP_400_BAD_REQUEST,
        )
        self.voucher_number = voucher_number
        self.amount = amount
        self.total_due = total_due
        self.remaining_amount = remaining_amount


class VoucherSuperseded(ServiceError):
    code = "VOUCHER_SUPERSEDED"

    def __init__(self, voucher_number: str, latest_voucher_number: str) -> None:
        super().__init__(
            f"Voucher {voucher_number} has been carried forward into voucher {latest_voucher_number}; "
            f"record payments against {latest_voucher_number} instead",
            status.HTTP_409_CONFLICT,
        )
        self.voucher_number = voucher_number
        self.latest_voucher_number = latest_voucher_number


class OverpaymentRejected(ServiceError):
    code = "OVERPAYMENT_REJECTED"

    def __init__(self, voucher_number: str, amount: Decimal, total_due: Decimal, remaining_amount: Decimal) -> None:
        super().__init__(
            f"Payment of {amount} rejected for voucher {voucher_number}: total due is {total_due}, "
            f"remaining amount is {remaining_amount}",
            status.HTTP_400_BAD_REQUEST,
        )
        self.voucher_number = voucher_number
        self.amount = amount
        self.total_due = total_due
        self.remaining_amount = remaining_amount


class ConcurrentUpdateConflict(ServiceError):
    code = "CONCURRENT_UPDATE_CONFLICT"

    def __init__(self, voucher_number: str) -> None:
        super().__init__(
            f"Voucher {voucher_number} was modified concurrently; payment not applied, please retry",
            status.HTTP_409_CONFLICT,
        )
        self.voucher_number = voucher_number


class PaymentNotFound(ServiceError):
    code = "PAYMENT_NOT_FOUND"

    def __init__(self, payment_id: UUID) -> None:
        super().__init__(f"Payment {payment_id} not found", status.HTTP_404_NOT_FOUND)
        self.payment_id = payment_id


class PaymentAlreadyReversed(ServiceError):
    code = "PAYMENT_ALREADY_REVERSED"

    def __init__(self, receipt_number: str) -> None:
        super().__init__(f"Payment {receipt_number} is already reversed", status.HTTP_409_CONFLICT)
        self.receipt_number = receipt_number


# --- Ledger ---
class VoucherNotFound(ServiceError):
    code = "VOUCHER_NOT_FOUND"

    def __init__(self, key: str) -> None:
        super().__init__(f"Voucher not found: {key}", status.HTTP_404_NOT_FOUND)
        self.key = key


class VoucherHasPayments(ServiceError):
    code = "VOUCHER_HAS_PAYMENTS"

    def __init__(self, voucher_number: str) -> None:
        super().__init__(
            f"Voucher {voucher_number} has completed payments; reverse them before deleting",
            status.HTTP_409_CONFLICT,
        )
        self.voucher_number = voucher_number


class VoucherNotLatest(ServiceError):
    code = "VOUCHER_NOT_LATEST"

    def __init__(self, voucher_number: str) -> None:
        super().__init__(
            f"Voucher {voucher_number} is not the student's latest voucher; only the latest voucher can be deleted",
            status.HTTP_409_CONFLICT,
        )
        self.voucher_number = voucher_number


# --- Suspense ---
class SuspenseEntryNotFound(ServiceError):
    code = "SUSPENSE_ENTRY_NOT_FOUND"

    def __init__(self, entry_id: UUID) -> None:
        super().__init__(
            f"Unidentified payment entry {entry_id} not found or already reconciled",
            status.HTTP_404_NOT_FOUND,
        )
        self.entry_id = entry_id


class NothingToReconcile(ServiceError):
    code = "NOTHING_TO_RECONCILE"

    def __init__(self, voucher_number: str) -> None:
        super().__init__(
            f"Voucher {voucher_number} has no remaining amount; nothing to reconcile against",
            status.HTTP_409_CONFLICT,
        )
        self.voucher_number = voucher_number
