"""Shared pieces for the API views: caller identity and error responses."""

from pydantic import ValidationError as PydanticValidationError
from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from apps.orders.domain import DomainError, NotFound, PaymentFailed

ERROR_STATUS = {
    NotFound: status.HTTP_404_NOT_FOUND,
    PaymentFailed: status.HTTP_402_PAYMENT_REQUIRED,
}


class Unauthenticated(APIException):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "UNAUTHENTICATED"
    default_code = "unauthenticated"


class StaffOnly(APIException):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "FORBIDDEN"
    default_code = "forbidden"


def error_response(exc: DomainError) -> Response:
    """Map a domain error to its HTTP response (400 unless listed in ERROR_STATUS)."""
    code = next(
        (st for cls, st in ERROR_STATUS.items() if isinstance(exc, cls)),
        status.HTTP_400_BAD_REQUEST,
    )
    return Response(exc.to_dict(), status=code)


def validation_response(exc: PydanticValidationError) -> Response:
    errors = [
        {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
        for err in exc.errors()
    ]
    return Response(
        {"detail": "VALIDATION_ERROR", "message": "Invalid request.", "errors": errors},
        status=status.HTTP_400_BAD_REQUEST,
    )


class UserAPIView(APIView):
    """APIView that requires the caller identity set by the gateway.

    Handlers read the caller from ``self.user_id``.
    """

    throttle_classes = [ScopedRateThrottle]

    def initial(self, request, *args, **kwargs):
        super().initial(request, *args, **kwargs)
        if not getattr(request, "user_id", None):
            raise Unauthenticated()
        self.user_id = request.user_id

    def require_staff(self, request):
        if not getattr(request, "is_staff", False):
            raise StaffOnly()
