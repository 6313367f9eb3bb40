from fastapi import Request

from app.services.auth.login_rate_limit import get_client_ip
from app.services.ledger.service import RequestContext


def request_context(request: Request) -> RequestContext:
    """Client details stored on ledger entries."""
    return RequestContext(
        session_id=request.headers.get("X-Session-Id"),
        user_agent=request.headers.get("User-Agent"),
        ip_address=get_client_ip(request),
    )
