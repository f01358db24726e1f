"""
Payment Pipeline Exceptions

This module defines the exception hierarchy for the checkout and entitlement
pipeline. Every error carries an HTTP status code and a stable error code so
views can turn it into a JSON response without a lookup table.

Error classes:
- Input errors (reported immediately, never retried):
  CourseNotFound, CourseNotPurchasable, DuplicatePendingOrder,
  AlreadyEntitled, UnknownOrder, OrderNotPayable
- Integrity errors (terminal for the offending callback):
  InvalidSignature, AmountMismatch, VerificationFailed
- Transient infrastructure errors (retry with backoff or reconcile later):
  GatewayUnavailable
- Concurrency signals (handled inside the pipeline):
  StaleTransition

Author: DSP Development Team
Version: 1.0.0
"""

from typing import Optional, Dict, Any


class PaymentException(Exception):
    """
    Base exception class for all payment pipeline errors.

    Attributes:
        message (str): Human-readable error message
        status_code (int): HTTP status code used by the API layer
        error_code (str): Stable machine-readable identifier
        details (Dict[str, Any]): Additional error context

    Example:
        >>> try:
        ...     store.create_order(user, course_id)
        ... except PaymentException as e:
        ...     return Response(e.to_dict(), status=e.status_code)
    """

    default_message = "Payment processing error"
    status_code = 400
    error_code = "PaymentError"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
    ) -> None:
        self.message = message or self.default_message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert exception to dictionary for serialization.

        Returns:
            Dictionary representation of the exception
        """
        return {
            "message": self.message,
            "status_code": self.status_code,
            "error_code": self.error_code,
            "details": self.details,
            "exception_type": self.__class__.__name__,
        }


# --- Input errors ---


class CourseNotFound(PaymentException):
    default_message = "Course not found"
    status_code = 404
    error_code = "CourseNotFound"

    def __init__(self, course_id: Any = None, message: Optional[str] = None) -> None:
        self.course_id = course_id
        super().__init__(message, details={"course_id": course_id})


class CourseNotPurchasable(PaymentException):
    default_message = "Course is not available for purchase"
    status_code = 409
    error_code = "CourseNotPurchasable"

    def __init__(self, course_id: Any = None, message: Optional[str] = None) -> None:
        self.course_id = course_id
        super().__init__(message, details={"course_id": course_id})


class DuplicatePendingOrder(PaymentException):
    """
    Raised when the buyer already has an unfinished checkout for the course.

    The pending order reference is exposed in ``details`` so the client can
    resume that checkout instead of starting a second one.
    """

    default_message = "A checkout for this course is already in progress"
    status_code = 409
    error_code = "DuplicatePendingOrder"

    def __init__(self, pending_order_ref: Optional[str] = None, message: Optional[str] = None) -> None:
        self.pending_order_ref = pending_order_ref
        details = {"pending_order_ref": pending_order_ref} if pending_order_ref else {}
        super().__init__(message, details=details)


class AlreadyEntitled(PaymentException):
    default_message = "Buyer already has access to this course"
    status_code = 409
    error_code = "AlreadyEntitled"


class UnknownOrder(PaymentException):
    default_message = "Order not found"
    status_code = 404
    error_code = "UnknownOrder"

    def __init__(self, reference: Optional[str] = None, message: Optional[str] = None) -> None:
        self.reference = reference
        super().__init__(message, details={"reference": reference} if reference else {})


class OrderNotPayable(PaymentException):
    """Raised for callbacks against orders that can no longer be completed."""

    default_message = "Order can no longer be paid"
    status_code = 409
    error_code = "OrderNotPayable"

    def __init__(self, order_ref: Optional[str] = None, status: Optional[str] = None,
                 message: Optional[str] = None) -> None:
        self.order_ref = order_ref
        self.order_status = status
        details = {}
        if order_ref:
            details["order_ref"] = order_ref
        if status:
            details["status"] = status
        super().__init__(message, details=details)


# --- Concurrency ---


class StaleTransition(PaymentException):
    """
    Compare-and-swap lost: the order's status no longer matches ``from_status``.

    Callers re-read the order and apply the idempotent rules instead of
    surfacing this error.
    """

    default_message = "Order status changed concurrently"
    status_code = 409
    error_code = "StaleTransition"

    def __init__(self, order_ref: str, expected, target: str) -> None:
        self.order_ref = order_ref
        self.expected = expected
        self.target = target
        super().__init__(
            f"Order {order_ref} is no longer in {expected}; cannot move to {target}",
            details={"order_ref": order_ref, "target": target},
        )


class IllegalTransition(PaymentException):
    default_message = "Transition is not allowed by the order state machine"
    status_code = 500
    error_code = "IllegalTransition"


# --- Integrity errors ---


class InvalidSignature(PaymentException):
    default_message = "Callback signature does not match"
    status_code = 400
    error_code = "InvalidSignature"


class AmountMismatch(PaymentException):
    default_message = "Payment does not match the recorded order amount"
    status_code = 400
    error_code = "AmountMismatch"


class VerificationFailed(PaymentException):
    """
    Terminal rejection of a callback.

    Wraps the underlying integrity error (``reason``); the order has already
    been moved to FAILED when this is raised.
    """

    default_message = "Payment verification failed"
    status_code = 400
    error_code = "VerificationFailed"

    def __init__(self, order_ref: Optional[str], reason: PaymentException) -> None:
        self.order_ref = order_ref
        self.reason = reason
        super().__init__(
            f"Payment verification failed: {reason.message}",
            details={"order_ref": order_ref, "reason": reason.error_code},
        )


# --- Gateway errors ---


class GatewayUnavailable(PaymentException):
    """
    Transport failure, timeout or 5xx from the payment gateway.

    The remote side may still have processed the request, so local state must
    not be marked failed because of this error alone.
    """

    default_message = "Payment gateway temporarily unavailable"
    status_code = 503
    error_code = "GatewayUnavailable"


class GatewayRequestRejected(PaymentException):
    """The gateway answered with a non-retryable 4xx (credentials, validation)."""

    default_message = "Payment gateway rejected the request"
    status_code = 502
    error_code = "GatewayRequestRejected"

    def __init__(self, message: Optional[str] = None, gateway_status: Optional[int] = None) -> None:
        self.gateway_status = gateway_status
        details = {"gateway_status": gateway_status} if gateway_status else {}
        super().__init__(message, details=details)
