from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel
from typing import Any, Dict, Optional
import logging


class ErrorResponse(BaseModel):
    success: bool = False
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None


class AppException(Exception):
    """애플리케이션 전역에서 사용하는 커스텀 예외.

    - code: 서비스 내 식별 가능한 에러 코드 (예: SLOT_CONFLICT)
    - status_code: HTTP 상태 코드
    - message: 사용자에게 전달할 메시지
    - details: 디버깅/추가 정보 (옵션)
    - log_level: 기록 레벨 (logging.INFO, WARNING, ERROR 등)
    """

    default_code = "APP_ERROR"
    default_status = 500
    default_message = "Internal server error"
    default_log_level = logging.ERROR

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        log_level: Optional[int] = None,
    ) -> None:
        self.code = code or self.default_code
        self.status_code = status_code or self.default_status
        self.message = message or self.default_message
        self.details = details or {}
        self.log_level = log_level if log_level is not None else self.default_log_level
        super().__init__(self.message)

    def to_response(self) -> JSONResponse:
        payload = ErrorResponse(code=self.code, message=self.message, details=self.details)
        return JSONResponse(status_code=self.status_code, content=jsonable_encoder(payload))


##### 도메인 예외 #####

class ValidationError(AppException):
    default_code = "VALIDATION_ERROR"
    default_status = 400
    default_message = "Invalid request"
    default_log_level = logging.WARNING


class NotFoundError(AppException):
    default_code = "NOT_FOUND"
    default_status = 404
    default_message = "Resource not found"
    default_log_level = logging.INFO


class ForbiddenError(AppException):
    default_code = "FORBIDDEN"
    default_status = 403
    default_message = "Access denied"
    default_log_level = logging.WARNING


class ConflictError(AppException):
    default_code = "CONFLICT"
    default_status = 409
    default_message = "Request conflicts with the current state"
    default_log_level = logging.WARNING


class SlotConflictError(ConflictError):
    """다른 예약이 같은 시간대를 이미 점유한 경우"""
    default_code = "SLOT_CONFLICT"
    default_message = "This time slot has already been booked"


class SlotNoLongerAvailableError(ConflictError):
    """결제 완료 시점에 예약이 더 이상 유효하지 않은 경우 (자동 환불됨)"""
    default_code = "SLOT_NO_LONGER_AVAILABLE"
    default_message = "Time slot is no longer available; the payment has been refunded"


class SelfOverlapError(ConflictError):
    default_code = "SELF_OVERLAP"
    default_message = "You already have an appointment during this time"


class OutsideAvailabilityError(AppException):
    default_code = "OUTSIDE_AVAILABILITY"
    default_status = 400
    default_message = "Selected time is outside of provider's availability"
    default_log_level = logging.INFO


class InvalidStateError(AppException):
    default_code = "INVALID_STATE"
    default_status = 400
    default_message = "Request is not allowed in the current state"
    default_log_level = logging.WARNING


class AlreadyCompletedError(InvalidStateError):
    default_code = "ALREADY_COMPLETED"
    default_message = "This appointment has already been completed"


class PastAppointmentError(InvalidStateError):
    default_code = "PAST_APPOINTMENT"
    default_message = "Cannot cancel an appointment that has already started"


class TooManyPendingError(AppException):
    default_code = "TOO_MANY_PENDING"
    default_status = 400
    default_message = "Maximum pending appointments limit reached"
    default_log_level = logging.INFO


class PaymentMismatchError(AppException):
    default_code = "PAYMENT_MISMATCH"
    default_status = 409
    default_message = "Payment does not match the appointment"
    default_log_level = logging.ERROR


class PaymentNotVerifiedError(AppException):
    """결제 제공자 조회 결과가 보고된 상태와 다른 경우"""
    default_code = "PAYMENT_NOT_VERIFIED"
    default_status = 400
    default_message = "Payment provider does not confirm the reported status"
    default_log_level = logging.WARNING


class PaymentGatewayError(AppException):
    default_code = "PAYMENT_GATEWAY_ERROR"
    default_status = 502
    default_message = "Payment provider request failed"
    default_log_level = logging.ERROR


def register_exception_handlers(app) -> None:
    """FastAPI 앱에 전역 예외 핸들러를 등록합니다."""
    logger = logging.getLogger("exception")

    @app.exception_handler(AppException)
    async def handle_app_exception(request: Request, exc: AppException):
        logger.log(exc.log_level, f"AppException: {exc.code} - {exc.message} | path={request.url.path}")
        return exc.to_response()

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        logger.warning("ValidationError on %s: %s", request.url.path, exc.errors())
        payload = ErrorResponse(
            code="REQUEST_VALIDATION_ERROR",
            message="Invalid request",
            details={"errors": exc.errors()},
        )
        return JSONResponse(status_code=400, content=jsonable_encoder(payload))

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.exception("Unhandled exception on %s: %s", request.url.path, str(exc))
        payload = ErrorResponse(
            code="INTERNAL_SERVER_ERROR",
            message="Internal server error",
            details=None,
        )
        return JSONResponse(status_code=500, content=payload.model_dump())
