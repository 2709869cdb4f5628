from enum import Enum


class FeeHeadAccountType(str, Enum):
    LIABILITIES = "LIABILITIES"
    INCOME = "INCOME"
    OTHER_INCOME = "OTHER_INCOME"


class FeeHeadFrequency(str, Enum):
    MONTHLY = "MONTHLY"
    ONE_TIME = "ONE_TIME"  # billed once, on the student's first voucher carrying it
    AD_HOC = "AD_HOC"  # e.g. paper charges; billed only when explicitly requested


class DiscountType(str, Enum):
    amount = "amount"
    percentage = "percentage"


class VoucherStatus(str, Enum):
    generated = "generated"
    partial = "partial"
    paid = "paid"


class PaymentStatus(str, Enum):
    completed = "completed"
    reversed = "reversed"


class PaymentMethod(str, Enum):
    CASH = "CASH"
    CHEQUE = "CHEQUE"
    BANK_TRANSFER = "BANK_TRANSFER"
    ONLINE = "ONLINE"
    CARD = "CARD"
    UPI = "UPI"
    OTHER = "OTHER"


class CounterType(str, Enum):
    VOUCHER = "VCH"
    RECEIPT = "RCP"


class SuspenseStatus(str, Enum):
    unidentified = "unidentified"
    reconciled = "reconciled"
    cancelled = "cancelled"
