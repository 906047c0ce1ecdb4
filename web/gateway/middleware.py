"""Request-scoped gateway middleware.

``RequestIdMiddleware`` gives every request a correlation id: the client's
``X-Request-Id`` when present, a fresh UUID4 otherwise. The id is exposed
on ``request.request_id``, published through ``REQUEST_ID_CTX`` for log
records and outbound calls, and echoed in the ``X-Request-ID`` response
header.

``ApiSizeLimitMiddleware`` rejects oversized ``/api/`` bodies (checkout
carts, webhook payloads, proof submissions) before they are parsed.
"""

import contextvars
import os
import uuid

from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")
MAX_API_BYTES = int(os.getenv("API_MAX_BYTES", str(1 * 1024 * 1024)))


class RequestIdMiddleware(MiddlewareMixin):
    HEADER = "HTTP_X_REQUEST_ID"
    RESPONSE_HEADER = "X-Request-ID"

    def process_request(self, request):
        rid = request.META.get(self.HEADER) or str(uuid.uuid4())
        request.request_id = rid
        REQUEST_ID_CTX.set(rid)

    def process_response(self, request, response):
        response[self.RESPONSE_HEADER] = getattr(request, "request_id", REQUEST_ID_CTX.get())
        return response


class ApiSizeLimitMiddleware(MiddlewareMixin):
    def process_request(self, request):
        if not request.path.startswith("/api/"):
            return None
        clen = request.META.get("CONTENT_LENGTH")
        if clen and clen.isdigit() and int(clen) > MAX_API_BYTES:
            return JsonResponse({"detail": "PAYLOAD_TOO_LARGE", "message": "Request body is too large"}, status=413)
        return None
