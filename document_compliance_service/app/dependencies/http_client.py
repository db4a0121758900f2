import httpx
from fastapi import Request

from document_compliance_service.app.config import settings


async def get_http_client(request: Request) -> httpx.AsyncClient:
    """
    Shared httpx.AsyncClient held on application state by the startup hook.
    Created on first use when startup never ran, so the employee directory client still works.
    """
    client = getattr(request.app.state, "http_client", None)
    if client is None:
        client = httpx.AsyncClient(timeout=settings.DEFAULT_HTTP_TIMEOUT)
        request.app.state.http_client = client
    return client
