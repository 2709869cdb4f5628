from app.core.models.institution import Institution
from app.core.models.academic_year import AcademicYear
from app.core.models.class_model import SchoolClass
from app.core.models.student_academic_record import StudentAcademicRecord
from app.core.models.fee_head import FeeHead
from app.core.models.class_fee_structure import ClassFeeStructure
from app.core.models.student_discount import StudentDiscount
from app.core.models.installment_plan import InstallmentPlan
from app.core.models.fee_voucher import FeeVoucher, FeeVoucherItem
from app.core.models.fee_payment import FeePayment
from app.core.models.suspense_entry import SuspenseEntry
from app.core.models.document_counter import DocumentCounter
from app.core.models.fee_audit_log import FeeAuditLog

__all__ = [
    "AcademicYear",
    "ClassFeeStructure",
    "DocumentCounter",
    "FeeAuditLog",
    "FeeHead",
    "FeePayment",
    "FeeVoucher",
    "FeeVoucherItem",
    "InstallmentPlan",
    "Institution",
    "SchoolClass",
    "StudentAcademicRecord",
    "StudentDiscount",
    "SuspenseEntry",
]
