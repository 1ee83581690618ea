"""
副本台账 API 路由（馆员使用）
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import CurrentUser, get_circulation_service, require_librarian
from application.dtos.loans import AvailabilityDTO, CopyDTO, RegisterCopyRequest
from application.services.circulation_service import CirculationService
from core.response import success_response, Response as ApiResponse

router = APIRouter(tags=["Copies"])


@router.post("/books/{book_id}/copies", summary="Register a copy", response_model=ApiResponse[CopyDTO])
async def register_copy(
    book_id: int,
    payload: RegisterCopyRequest,
    _: CurrentUser = Depends(require_librarian),
    service: CirculationService = Depends(get_circulation_service),
):
    copy = await service.register_copy(book_id, payload.barcode)
    return success_response(data=copy, message="Copy registered")


@router.put("/copies/{copy_id}/{action}", summary="Move a copy between states", response_model=ApiResponse[CopyDTO])
async def copy_action(
    copy_id: int,
    action: str,
    _: CurrentUser = Depends(require_librarian),
    service: CirculationService = Depends(get_circulation_service),
):
    """
    操作：reserve、cancel-reservation、maintenance、restore
    """
    copy = await service.copy_action(copy_id, action)
    return success_response(data=copy)


@router.get("/books/{book_id}/availability", summary="Book availability", response_model=ApiResponse[AvailabilityDTO])
async def availability(
    book_id: int,
    service: CirculationService = Depends(get_circulation_service),
):
    data = await service.availability(book_id)
    return success_response(data=data)


@router.get("/books/{book_id}/copies", summary="List copies", response_model=ApiResponse[List[CopyDTO]])
async def list_copies(
    book_id: int,
    state: Optional[str] = Query(None, description="available / on_loan / reserved / maintenance"),
    _: CurrentUser = Depends(require_librarian),
    service: CirculationService = Depends(get_circulation_service),
):
    copies = await service.list_copies(book_id, state)
    return success_response(data=copies)
