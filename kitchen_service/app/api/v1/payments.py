from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Request, status
from fastapi.responses import JSONResponse

from ...core.exceptions import WebhookProcessingError, WebhookSignatureError
from ...schemas.order import CreateOrderRequest, OrderActionResponse, OrderResponse
from ...schemas.payment import (
    PaymentDetailsResponse,
    PaymentIntentRequest,
    PaymentIntentResponse,
    ProcessRefundRequest,
    RefundRequest,
    VerifyPaymentResponse,
    WebhookAck,
)
from ...services.payment_service import PaymentService
from ...services.side_effects import SideEffectDispatcher
from ...utils.logging import setup_kitchen_logging
from ..deps import (
    AdminUserDep,
    CurrentUserEmailDep,
    CurrentUserIdDep,
    CurrentUserRoleDep,
    DispatcherDep,
    PaymentServiceDep,
)
from .orders import respond

logger = setup_kitchen_logging("kitchen_service.api.payments")

router = APIRouter(prefix="/payments")


@router.post("/create-payment-intent", status_code=status.HTTP_200_OK)
async def create_payment_intent(
    payload: PaymentIntentRequest,
    user_id: int = CurrentUserIdDep,
    payment_service: PaymentService = PaymentServiceDep,
) -> PaymentIntentResponse:
    intent = await payment_service.create_payment_intent(payload.order_id, user_id)
    return PaymentIntentResponse(
        client_secret=intent.client_secret,
        payment_intent_id=intent.id,
        amount=intent.amount,
        currency=intent.currency,
        order_id=payload.order_id,
    )


@router.post("/create-payment-intent-for-order", status_code=status.HTTP_200_OK)
async def create_payment_intent_for_order(
    order_data: CreateOrderRequest,
    user_id: int = CurrentUserIdDep,
    user_email: Optional[str] = CurrentUserEmailDep,
    payment_service: PaymentService = PaymentServiceDep,
) -> PaymentIntentResponse:
    """Payment-first: the order is created by the webhook once payment succeeds"""
    intent, total_amount = await payment_service.create_payment_intent_for_unsaved_order(
        user_id, order_data, user_email
    )
    return PaymentIntentResponse(
        client_secret=intent.client_secret,
        payment_intent_id=intent.id,
        amount=total_amount,
        currency=intent.currency,
    )


@router.post("/webhook", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    payment_service: PaymentService = PaymentServiceDep,
    dispatcher: SideEffectDispatcher = DispatcherDep,
) -> JSONResponse:
    """Signed payment processor events; the acknowledgment never carries error detail"""
    raw_body = await request.body()
    signature = request.headers.get("stripe-signature")

    try:
        result = await payment_service.handle_webhook(raw_body, signature)
    except WebhookSignatureError as e:
        logger.warning(f"Rejected webhook: {e.message}")
        return JSONResponse(status_code=400, content={"received": False})
    except WebhookProcessingError:
        return JSONResponse(status_code=500, content={"received": False})
    except Exception:
        logger.error("Webhook handling failed", exc_info=True)
        return JSONResponse(status_code=500, content={"received": False})

    if result.side_effects:
        background_tasks.add_task(dispatcher.run, result.side_effects)
    return JSONResponse(status_code=200, content={"received": True})


@router.post("/request-refund", status_code=status.HTTP_200_OK)
async def request_refund(
    payload: RefundRequest,
    background_tasks: BackgroundTasks,
    user_id: int = CurrentUserIdDep,
    payment_service: PaymentService = PaymentServiceDep,
    dispatcher: SideEffectDispatcher = DispatcherDep,
) -> OrderActionResponse:
    result = await payment_service.request_refund(
        payload.order_id, user_id, payload.reason
    )
    return respond(result, "Refund requested", background_tasks, dispatcher)


@router.post("/refund", status_code=status.HTTP_200_OK)
async def process_refund(
    payload: ProcessRefundRequest,
    background_tasks: BackgroundTasks,
    admin: dict = AdminUserDep,
    payment_service: PaymentService = PaymentServiceDep,
    dispatcher: SideEffectDispatcher = DispatcherDep,
) -> OrderActionResponse:
    result = await payment_service.process_refund(payload.order_id, payload.reason)
    return respond(result, "Refund processed", background_tasks, dispatcher)


@router.get("/details/{order_id}", status_code=status.HTTP_200_OK)
async def payment_details(
    order_id: int,
    user_id: int = CurrentUserIdDep,
    user_role: Optional[str] = CurrentUserRoleDep,
    payment_service: PaymentService = PaymentServiceDep,
) -> PaymentDetailsResponse:
    details = await payment_service.get_payment_details(order_id, user_id, user_role)
    return PaymentDetailsResponse(**details)


@router.get("/verify/{order_id}", status_code=status.HTTP_200_OK)
async def verify_payment(
    order_id: int,
    background_tasks: BackgroundTasks,
    user_id: int = CurrentUserIdDep,
    payment_service: PaymentService = PaymentServiceDep,
    dispatcher: SideEffectDispatcher = DispatcherDep,
) -> VerifyPaymentResponse:
    result = await payment_service.verify_payment_status(order_id, user_id)
    if result.side_effects:
        background_tasks.add_task(dispatcher.run, result.side_effects)
    verified = bool(result.details.get("verified"))
    return VerifyPaymentResponse(
        order=OrderResponse.model_validate(result.order),
        verified=verified,
        intent_status=result.details.get("intent_status"),
        message="Payment verified" if verified else "Payment not completed",
    )
