import uuid
from starlette.middleware.base import BaseHTTPMiddleware


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Tags every request/response pair with an x-correlation-id."""

    async def dispatch(self, request, call_next):
        cid = request.headers.get('x-correlation-id') or f"dg-{uuid.uuid4()}"
        request.state.correlation_id = cid
        response = await call_next(request)
        response.headers['x-correlation-id'] = cid
        return response
