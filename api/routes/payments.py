"""
Fine payment API routes.

Thin layer over FinePaymentService and CallbackReconciler; no gateway
details here.
"""
from __future__ import annotations

import ipaddress
import json
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from api.dependencies import (
    CurrentUser,
    get_callback_reconciler,
    get_current_user,
    get_payment_service,
    require_admin,
)
from application.dtos.payments import (
    CallbackOutcome,
    InitiatePaymentResult,
    PaymentDTO,
    RefundPaymentRequest,
    WebhookCallback,
)
from application.services.callback_reconciler import CallbackReconciler
from application.services.payment_service import FinePaymentService
from core.exceptions import ForbiddenException
from core.logging_config import get_logger
from core.response import success_response, error_response, Response as ApiResponse
from core.settings import payment_settings
from shared.codes import BusinessCode


router = APIRouter(prefix="/payments", tags=["Payments"])
logger = get_logger(__name__)


def ip_allowed(remote_ip: Optional[str], allowlist: Optional[List[str]]) -> bool:
    """Empty allowlist admits everyone; entries are IPs or CIDRs"""
    if not allowlist:
        return True
    if not remote_ip:
        return False
    try:
        rip = ipaddress.ip_address(remote_ip)
    except ValueError:
        return False
    for entry in allowlist:
        try:
            if "/" in entry:
                if rip in ipaddress.ip_network(entry, strict=False):
                    return True
            elif rip == ipaddress.ip_address(entry):
                return True
        except ValueError:
            logger.warning("webhook_allowlist_entry_invalid", entry=entry)
    return False


async def _callback_fields(request: Request) -> dict[str, Any]:
    """Query string first, then a JSON or form body on POST"""
    fields: dict[str, Any] = dict(request.query_params)
    if request.method != "POST":
        return fields
    ct = (request.headers.get("content-type") or "").lower()
    if "application/x-www-form-urlencoded" in ct or "multipart/form-data" in ct:
        form = await request.form()
        fields.update({k: v for k, v in form.items() if isinstance(v, str)})
        return fields
    raw = await request.body()
    if raw:
        try:
            body = json.loads(raw)
        except ValueError:
            raise ValueError("callback body is not valid JSON")
        if not isinstance(body, dict):
            raise ValueError("callback body must be a JSON object")
        fields.update(body)
    return fields


def _malformed(request: Request, reason: str) -> JSONResponse:
    response = error_response(
        code=BusinessCode.PARAM_ERROR,
        message=f"Malformed callback: {reason}",
        error_type="MalformedCallback",
        request_id=getattr(request.state, "request_id", None),
    )
    return JSONResponse(status_code=400, content=response.model_dump(mode="json"))


@router.api_route("/bkash/callback", methods=["GET", "POST"], summary="bKash callback")
async def bkash_callback(
    request: Request,
    reconciler: CallbackReconciler = Depends(get_callback_reconciler),
):
    """
    Acknowledged with 200 whenever ``paymentID`` and ``status`` parse;
    processing faults end up on the payment row, not in the response.
    """
    remote_ip = request.client.host if request.client else None
    if not ip_allowed(remote_ip, payment_settings.webhook.ip_allowlist):
        logger.warning("webhook_ip_not_allowed", remote_ip=remote_ip)
        raise ForbiddenException("Callback source not allowed")

    try:
        fields = await _callback_fields(request)
        callback = WebhookCallback.model_validate(fields)
    except ValueError as e:
        # pydantic's ValidationError is a ValueError
        reason = "; ".join(err["msg"] for err in e.errors()) if isinstance(e, ValidationError) else str(e)
        logger.warning("payment_callback_malformed", reason=reason)
        return _malformed(request, reason)

    logger.info(
        "payment_callback_received",
        gateway_payment_id=callback.gateway_payment_id,
        status=callback.status,
    )
    try:
        outcome = await reconciler.handle(callback)
    except TimeoutError:
        logger.warning("payment_callback_lock_timeout", gateway_payment_id=callback.gateway_payment_id)
        outcome = CallbackOutcome(gateway_payment_id=callback.gateway_payment_id, outcome="pending", duplicate=True)
    except Exception:
        logger.exception("payment_callback_failed", gateway_payment_id=callback.gateway_payment_id)
        outcome = CallbackOutcome(gateway_payment_id=callback.gateway_payment_id, outcome="pending")
    return success_response(data=outcome, message="Callback received")


@router.post(
    "/loans/{loan_id}/initiate",
    summary="Pay a loan's fine",
    response_model=ApiResponse[InitiatePaymentResult],
)
async def initiate_payment(
    loan_id: int,
    user: CurrentUser = Depends(get_current_user),
    service: FinePaymentService = Depends(get_payment_service),
):
    """Returns the gateway URL the borrower is redirected to"""
    result = await service.initiate_payment(loan_id, borrower_id=user.id)
    return success_response(data=result, message="Payment initiated")


@router.post("/{payment_id}/refund", summary="Refund a payment", response_model=ApiResponse[PaymentDTO])
async def refund_payment(
    payment_id: int,
    payload: Optional[RefundPaymentRequest] = None,
    user: CurrentUser = Depends(require_admin),
    service: FinePaymentService = Depends(get_payment_service),
):
    reason = payload.reason if payload else None
    payment = await service.refund_payment(payment_id, reason=reason, actor=user.id)
    return success_response(data=payment, message="Payment refunded")


@router.get("/{payment_id}", summary="Get a payment", response_model=ApiResponse[PaymentDTO])
async def get_payment(
    payment_id: int,
    user: CurrentUser = Depends(get_current_user),
    service: FinePaymentService = Depends(get_payment_service),
):
    payment = await service.get_payment(payment_id)
    if not user.is_staff and payment.borrower_id != user.id:
        raise ForbiddenException("Not your payment")
    return success_response(data=payment)


@router.get("/loans/{loan_id}", summary="List a loan's payments", response_model=ApiResponse[List[PaymentDTO]])
async def list_loan_payments(
    loan_id: int,
    user: CurrentUser = Depends(get_current_user),
    service: FinePaymentService = Depends(get_payment_service),
):
    payments = await service.list_for_loan(loan_id)
    if not user.is_staff and any(p.borrower_id != user.id for p in payments):
        raise ForbiddenException("Not your loan")
    return success_response(data=payments)
