"""Vouchers router: generation, lookups, payments, reversal, deletion, outstanding report."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.auth.dependencies import get_current_user
from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser
from app.core.enums import VoucherStatus
from app.core.exceptions import ServiceError
from app.db.session import get_db, get_session_factory

from .schemas import (
    BatchGenerateResponse,
    FeeVoucherResponse,
    OutstandingBalanceItem,
    PaymentCreate,
    PaymentResponse,
    PaymentResult,
    PaymentReverseRequest,
    VoucherBatchGenerateRequest,
    VoucherGenerateRequest,
)
from . import generator, payments, service

router = APIRouter(prefix="/api/v1/vouchers", tags=["vouchers"])


# --- Generation ---
@router.post(
    "/generate",
    response_model=FeeVoucherResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("fees", "create"))],
)
async def generate_voucher(
    payload: VoucherGenerateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> FeeVoucherResponse:
    try:
        return await generator.generate_voucher(
            db, current_user.institution_id, payload, created_by=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/generate-batch",
    response_model=BatchGenerateResponse,
    dependencies=[Depends(check_permission("fees", "create"))],
)
async def generate_vouchers_batch(
    payload: VoucherBatchGenerateRequest,
    session_factory: async_sessionmaker = Depends(get_session_factory),
    current_user: CurrentUser = Depends(get_current_user),
) -> BatchGenerateResponse:
    # Per-student failures are part of the response body
    return await generator.generate_vouchers_batch(
        session_factory, current_user.institution_id, payload, created_by=current_user.id
    )


# --- Lookups ---
@router.get(
    "",
    response_model=List[FeeVoucherResponse],
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def list_period_vouchers(
    year: int = Query(..., ge=2000, le=2100),
    month: int = Query(..., ge=1, le=12),
    voucher_status: Optional[VoucherStatus] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[FeeVoucherResponse]:
    return await service.list_period_vouchers(
        db, current_user.institution_id, year, month, status=voucher_status
    )


@router.get(
    "/period",
    response_model=FeeVoucherResponse,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def get_voucher_for_period(
    student_id: UUID,
    year: int = Query(..., ge=2000, le=2100),
    month: int = Query(..., ge=1, le=12),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> FeeVoucherResponse:
    try:
        return await service.get_voucher_for_period(db, current_user.institution_id, student_id, year, month)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/by-number/{voucher_number}",
    response_model=FeeVoucherResponse,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def get_voucher_by_number(
    voucher_number: str,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> FeeVoucherResponse:
    try:
        return await service.get_voucher_by_number(db, current_user.institution_id, voucher_number)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/student/{student_id}",
    response_model=List[FeeVoucherResponse],
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def list_student_vouchers(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[FeeVoucherResponse]:
    return await service.list_student_vouchers(db, current_user.institution_id, student_id)


@router.get(
    "/reports/outstanding",
    response_model=List[OutstandingBalanceItem],
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def outstanding_report(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[OutstandingBalanceItem]:
    return await service.outstanding_balances(db, current_user.institution_id)


# --- Payments ---
@router.post(
    "/payments/{payment_id}/reverse",
    response_model=PaymentResult,
    dependencies=[Depends(check_permission("fees", "update"))],
)
async def reverse_payment(
    payment_id: UUID,
    payload: PaymentReverseRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> PaymentResult:
    try:
        return await payments.reverse_payment(
            db, current_user.institution_id, payment_id, payload.reason, changed_by=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/{voucher_id}",
    response_model=FeeVoucherResponse,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def get_voucher(
    voucher_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> FeeVoucherResponse:
    try:
        return await service.get_voucher(db, current_user.institution_id, voucher_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/{voucher_id}/payments",
    response_model=PaymentResult,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("fees", "create"))],
)
async def apply_payment(
    voucher_id: UUID,
    payload: PaymentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> PaymentResult:
    try:
        return await payments.apply_payment(
            db, current_user.institution_id, voucher_id, payload, collected_by=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/{voucher_id}/payments",
    response_model=List[PaymentResponse],
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def list_payments(
    voucher_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[PaymentResponse]:
    try:
        return await payments.list_payments(db, current_user.institution_id, voucher_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete(
    "/{voucher_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(check_permission("fees", "delete"))],
)
async def delete_voucher(
    voucher_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> None:
    try:
        await service.delete_voucher(db, current_user.institution_id, voucher_id, changed_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
