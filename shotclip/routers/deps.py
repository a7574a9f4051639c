"""Shared request dependencies"""

from typing import Dict

from fastapi import Request
from starlette.requests import HTTPConnection

from ..models.shot import SourceVideo
from ..services.orchestrator import ClipOrchestrator
from ..services.shot_detector import ShotDetector
from ..utils.exceptions import SourceNotFoundError


def presented_api_key(connection: HTTPConnection, allow_query: bool = False) -> str:
    """API key from the X-API-Key header, a bearer token, or (websockets) ?token="""
    api_key = connection.headers.get("x-api-key", "").strip()
    if api_key:
        return api_key

    auth_header = connection.headers.get("authorization", "")
    if auth_header.lower().startswith("bearer "):
        return auth_header.split(" ", 1)[1].strip()

    if allow_query:
        return connection.query_params.get("token", "").strip()
    return ""


def get_orchestrator(request: Request) -> ClipOrchestrator:
    return request.app.state.orchestrator


def get_detector(request: Request) -> ShotDetector:
    return request.app.state.detector


def get_sources(request: Request) -> Dict[str, SourceVideo]:
    return request.app.state.sources


def lookup_source(sources: Dict[str, SourceVideo], source_id: str) -> SourceVideo:
    source = sources.get(source_id)
    if source is None:
        raise SourceNotFoundError(source_id)
    return source
