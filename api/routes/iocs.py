"""
api/routes/iocs.py -- REST endpoints for the three IOC resources.

build_ioc_router(kind) returns one APIRouter per IOCKind. The three routers
are identical apart from the path segment, the request models (which carry
the value-format rule) and the label used in 404 messages.

Routes (for each resource in sha256, urls, ipports):
  GET    /api/{resource}        -- filtered, paginated listing (public)
  GET    /api/{resource}/{id}   -- single record (public)
  POST   /api/{resource}        -- create (researcher or admin)
  PUT    /api/{resource}/{id}   -- partial update (researcher or admin)
  DELETE /api/{resource}/{id}   -- permanent delete (admin only)

Duplicate ioc_id values are never pre-checked: the store lets IntegrityError
propagate and the exception handler in api/main.py maps it to 409.

No `from __future__ import annotations` here: the route signatures refer to
the per-kind model classes through closure variables, which FastAPI can only
resolve when annotations are evaluated eagerly.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from api.models import IOC_CREATE_MODELS, IOC_PATCH_MODELS, IOCListResponse, IOCResponse
from auth.dependencies import require_admin, require_roles
from auth.models import Role, User
from core.config import get_settings
from core.errors import NotFound
from ioc.models import CONFIDENCE_MAX, CONFIDENCE_MIN, IOCFilter, IOCKind
from ioc.store import IOCStore

# Auth policy (per resource):
# - GET    list / detail:  public
# - POST   create:         researcher or admin
# - PUT    update:         researcher or admin
# - DELETE delete:         admin only
require_writer = require_roles(Role.RESEARCHER, Role.ADMIN)


def build_ioc_router(kind: IOCKind) -> APIRouter:
    """Return the CRUD router for one IOC kind. Mount it under /api."""
    create_model = IOC_CREATE_MODELS[kind]
    patch_model = IOC_PATCH_MODELS[kind]
    collection = f"/{kind.resource}"
    item = f"/{kind.resource}/{{record_id}}"
    not_found = f"{kind.label} not found"

    router = APIRouter()

    @router.get(collection, response_model=IOCListResponse, name=f"list_{kind.value}")
    def list_iocs(
        request: Request,
        page: int = Query(1, ge=1),
        limit: Optional[int] = Query(None, ge=1),
        threat_type: Optional[str] = Query(None, max_length=100),
        malware: Optional[str] = Query(None, max_length=255),
        reporter: Optional[str] = Query(None, max_length=255),
        min_confidence: Optional[int] = Query(None, ge=CONFIDENCE_MIN, le=CONFIDENCE_MAX),
    ) -> IOCListResponse:
        """List records newest first (first_seen DESC, id ASC).

        limit defaults to Settings.default_page_size and is silently capped
        at Settings.max_page_size; the response reports the effective value.
        """
        settings = get_settings()
        effective_limit = min(limit or settings.default_page_size, settings.max_page_size)
        filters = IOCFilter(
            threat_type=threat_type or None,
            malware=malware or None,
            reporter=reporter or None,
            min_confidence=min_confidence,
        )
        store: IOCStore = request.app.state.ioc_store
        total, records = store.list_iocs(kind, filters, page=page, limit=effective_limit)
        return IOCListResponse(
            total=total,
            page=page,
            limit=effective_limit,
            data=[IOCResponse.from_record(r) for r in records],
        )

    @router.get(item, response_model=IOCResponse, name=f"get_{kind.value}")
    def get_ioc(request: Request, record_id: int) -> IOCResponse:
        store: IOCStore = request.app.state.ioc_store
        record = store.get_ioc(kind, record_id)
        if record is None:
            raise NotFound(not_found)
        return IOCResponse.from_record(record)

    @router.post(collection, response_model=IOCResponse, status_code=201, name=f"create_{kind.value}")
    def create_ioc(
        request: Request,
        body: create_model,
        current_user: User = Depends(require_writer),
    ) -> IOCResponse:
        store: IOCStore = request.app.state.ioc_store
        record_id = store.create_ioc(kind, body.to_record())
        return IOCResponse.from_record(_reload(store, kind, record_id, not_found))

    @router.put(item, response_model=IOCResponse, name=f"update_{kind.value}")
    def update_ioc(
        request: Request,
        record_id: int,
        body: patch_model,
        current_user: User = Depends(require_writer),
    ) -> IOCResponse:
        """Apply the fields present in the body; omitted fields are left unchanged."""
        store: IOCStore = request.app.state.ioc_store
        if not store.update_ioc(kind, record_id, **body.to_fields()):
            raise NotFound(not_found)
        return IOCResponse.from_record(_reload(store, kind, record_id, not_found))

    @router.delete(item, status_code=204, name=f"delete_{kind.value}")
    def delete_ioc(
        request: Request,
        record_id: int,
        current_user: User = Depends(require_admin),
    ) -> Response:
        store: IOCStore = request.app.state.ioc_store
        if not store.delete_ioc(kind, record_id):
            raise NotFound(not_found)
        return Response(status_code=204)

    return router


def _reload(store: IOCStore, kind: IOCKind, record_id: int, not_found: str):
    # A concurrent delete between the write and this read is reported as 404.
    record = store.get_ioc(kind, record_id)
    if record is None:
        raise NotFound(not_found)
    return record
