"""
借阅 API 路由
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import (
    CurrentUser,
    get_circulation_service,
    get_current_user,
    require_librarian,
)
from application.dtos.loans import IssueLoanRequest, LoanDTO, WaiveFineRequest
from application.services.circulation_service import CirculationService
from core.config import settings
from core.exceptions import ForbiddenException
from core.response import success_response, paginated_response, Response as ApiResponse, PaginatedData

router = APIRouter(prefix="/loans", tags=["Loans"])


@router.post("", summary="Issue a loan", response_model=ApiResponse[LoanDTO])
async def issue_loan(
    payload: IssueLoanRequest,
    user: CurrentUser = Depends(require_librarian),
    service: CirculationService = Depends(get_circulation_service),
):
    """
    把一本图书的副本借给借阅人

    - **borrower_id**: 借阅人用户 ID
    - **book_id**: 要借出的图书
    - **copy_id**: 指定副本（可选，不填则任取一本可借副本）
    """
    loan = await service.issue_loan(payload, actor=user.id)
    return success_response(data=loan, message="Loan issued")


@router.put("/{loan_id}/renew", summary="Renew a loan", response_model=ApiResponse[LoanDTO])
async def renew_loan(
    loan_id: int,
    user: CurrentUser = Depends(get_current_user),
    service: CirculationService = Depends(get_circulation_service),
):
    if not user.is_staff:
        current = await service.get_loan(loan_id)
        if current.borrower_id != user.id:
            raise ForbiddenException("Only the borrower or a librarian may renew this loan")
    loan = await service.renew_loan(loan_id, actor=user.id)
    return success_response(data=loan, message="Loan renewed")


@router.put("/{loan_id}/return", summary="Return a loan", response_model=ApiResponse[LoanDTO])
async def return_loan(
    loan_id: int,
    user: CurrentUser = Depends(require_librarian),
    service: CirculationService = Depends(get_circulation_service),
):
    loan = await service.return_loan(loan_id, actor=user.id)
    return success_response(data=loan, message="Loan returned")


@router.put("/{loan_id}/lost", summary="Mark a loan lost", response_model=ApiResponse[LoanDTO])
async def mark_lost(
    loan_id: int,
    user: CurrentUser = Depends(require_librarian),
    service: CirculationService = Depends(get_circulation_service),
):
    loan = await service.mark_lost(loan_id, actor=user.id)
    return success_response(data=loan, message="Loan marked lost")


@router.put("/{loan_id}/fine/waive", summary="Waive a pending fine", response_model=ApiResponse[LoanDTO])
async def waive_fine(
    loan_id: int,
    payload: Optional[WaiveFineRequest] = None,
    user: CurrentUser = Depends(require_librarian),
    service: CirculationService = Depends(get_circulation_service),
):
    reason = payload.reason if payload else None
    loan = await service.waive_fine(loan_id, actor=user.id, reason=reason)
    return success_response(data=loan, message="Fine waived")


@router.get("/{loan_id}", summary="Get a loan", response_model=ApiResponse[LoanDTO])
async def get_loan(
    loan_id: int,
    user: CurrentUser = Depends(get_current_user),
    service: CirculationService = Depends(get_circulation_service),
):
    loan = await service.get_loan(loan_id)
    if not user.is_staff and loan.borrower_id != user.id:
        raise ForbiddenException("Not your loan")
    return success_response(data=loan)


@router.get("", summary="List loans", response_model=ApiResponse[PaginatedData[LoanDTO]])
async def list_loans(
    borrower_id: Optional[int] = Query(None, gt=0, description="Filter by borrower"),
    status: Optional[str] = Query(None, description="active / overdue / returned / lost"),
    page: int = Query(1, ge=1),
    size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    user: CurrentUser = Depends(get_current_user),
    service: CirculationService = Depends(get_circulation_service),
):
    """借阅人只能看到自己的借阅"""
    if not user.is_staff:
        borrower_id = user.id
    items, total = await service.list_loans(borrower_id=borrower_id, status=status, page=page, size=size)
    return paginated_response(items=items, total=total, page=page, size=size)
