"""Gateway middleware: request ids, payload limits and caller identity.

This module provides the small Django middlewares that sit in front of every
API view:

- ``RequestIdMiddleware`` makes sure every request carries an identifier
  (reused from ``X-Request-Id`` or generated) and echoes it back.
- ``ApiSizeLimitMiddleware`` rejects oversized API bodies early.
- ``UserIdentityMiddleware`` exposes the caller identity supplied by the
  upstream auth layer.

Behavior contract for identity:
- The auth layer in front of this service authenticates the caller and
  forwards ``X-User-ID`` (opaque user identifier) and optionally
  ``X-User-Role``. They are trusted as-is and never re-validated here.
- ``request.user_id`` is ``None`` when the header is absent; views that need
  a user answer 401.
"""

import uuid
import os
import contextvars
from django.http import JsonResponse

from django.utils.deprecation import MiddlewareMixin

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")
MAX_API_BYTES = int(os.getenv("API_MAX_BYTES", str(1 * 1024 * 1024)))


class RequestIdMiddleware(MiddlewareMixin):
    """Django middleware that sets and returns a per-request identifier.

    Attributes:
        HEADER (str): The name of the incoming HTTP header (in Django's
            ``request.META`` casing) that may contain a client-provided id.
        RESPONSE_HEADER (str): The name of the header returned on responses.
    """

    HEADER = "HTTP_X_REQUEST_ID"
    RESPONSE_HEADER = "X-Request-ID"

    def process_request(self, request):
        """Attach the request id to the request and to ``REQUEST_ID_CTX``.

        Args:
            request: Django HttpRequest instance.
        """
        rid = request.META.get(self.HEADER) or str(uuid.uuid4())
        request.request_id = rid
        REQUEST_ID_CTX.set(rid)

    def process_response(self, request, response):
        rid = getattr(request, "request_id", REQUEST_ID_CTX.get())
        response[self.RESPONSE_HEADER] = rid
        return response


class ApiSizeLimitMiddleware(MiddlewareMixin):
    def process_request(self, request):
        if request.path.startswith("/api/"):
            clen = request.META.get("CONTENT_LENGTH")
            if clen and clen.isdigit() and int(clen) > MAX_API_BYTES:
                return JsonResponse({"detail": "PAYLOAD_TOO_LARGE"}, status=413)


class UserIdentityMiddleware(MiddlewareMixin):
    """Expose the identity forwarded by the auth layer on the request.

    Sets ``request.user_id`` (str or None) and ``request.is_staff`` (bool).
    """

    USER_HEADER = "HTTP_X_USER_ID"
    ROLE_HEADER = "HTTP_X_USER_ROLE"
    STAFF_ROLE = "staff"

    def process_request(self, request):
        uid = (request.META.get(self.USER_HEADER) or "").strip()
        request.user_id = uid or None
        role = (request.META.get(self.ROLE_HEADER) or "").strip().lower()
        request.is_staff = bool(uid) and role == self.STAFF_ROLE
