"""
api/routes/v1/ads.py -- Property listing routes for the Amlak REST API.

Routes (in registration order to avoid FastAPI path capture conflicts):
  GET    /ads/stats               -- catalog statistics (admin)
  GET    /ads/admin               -- every ad regardless of status (admin)
  GET    /ads                     -- public catalog: approved ads, paginated, filterable
  POST   /ads                     -- create an ad, owned by the caller (auth)
  GET    /ads/{ad_id}             -- single ad; counts a view
  PUT    /ads/{ad_id}             -- edit (owner or admin)
  DELETE /ads/{ad_id}             -- delete (owner or admin)
  PATCH  /ads/{ad_id}/status      -- approve / reject (admin)
  POST   /ads/{ad_id}/rate        -- 1-5 star rating (admin)
  POST   /ads/{ad_id}/click       -- count a click (public)
  POST   /ads/{ad_id}/view        -- count a view (public)

Ownership:
  PUT and DELETE fetch the ad's owner id and ask auth.guard.authorize()
  before touching the store. The decision is never made from the request
  body -- only the stored user_id counts.

Visibility:
  GET /ads/{ad_id} only serves approved ads to the public; the owner and
  admins also see pending and rejected ones.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from ads.models import Ad
from ads.store import AdStore
from api.limiter import limiter
from api.models import (
    AdCreate,
    AdListResponse,
    AdRating,
    AdResponse,
    AdStatsResponse,
    AdStatusUpdate,
    AdUpdate,
    MessageResponse,
    PropertyTypeEnum,
)
from auth.dependencies import enforce, get_claims, require_admin, try_get_claims
from auth.guard import Action, AdRef, authorize
from auth.models import Claims

router = APIRouter()


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "not_found", "message": "Ad not found."})


def _owner_of(ad_store: AdStore, ad_id: int) -> AdRef:
    try:
        return AdRef(owner_id=ad_store.get_owner_id(ad_id))
    except LookupError:
        raise _not_found() from None


# ---------------------------------------------------------------------------
# Admin views (must be registered before /ads/{ad_id})
# ---------------------------------------------------------------------------


@router.get("/ads/stats", response_model=AdStatsResponse)
def ad_stats(request: Request, claims: Claims = Depends(require_admin)) -> AdStatsResponse:
    ad_store: AdStore = request.app.state.ad_store
    return AdStatsResponse.from_stats(ad_store.get_stats())


@router.get("/ads/admin", response_model=AdListResponse)
def admin_list_ads(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    claims: Claims = Depends(require_admin),
) -> AdListResponse:
    ad_store: AdStore = request.app.state.ad_store
    ads = ad_store.list_all(limit=limit, offset=(page - 1) * limit)
    return AdListResponse(ads=[AdResponse.from_ad(a) for a in ads], page=page, limit=limit)


# ---------------------------------------------------------------------------
# Public catalog
# ---------------------------------------------------------------------------


@limiter.limit("120/minute")
@router.get("/ads", response_model=AdListResponse)
def list_ads(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    q: str | None = Query(default=None, max_length=100),
    province: str | None = Query(default=None, max_length=100),
    property_type: PropertyTypeEnum | None = None,
) -> AdListResponse:
    """Approved ads, newest first. q matches title, description, address, province and city."""
    ad_store: AdStore = request.app.state.ad_store
    ads = ad_store.list_approved(
        limit=limit,
        offset=(page - 1) * limit,
        query=q,
        province=province,
        property_type=property_type.value if property_type else None,
    )
    return AdListResponse(
        ads=[AdResponse.from_ad(a, include_admin_notes=False) for a in ads],
        page=page,
        limit=limit,
    )


@limiter.limit("30/minute")
@router.post("/ads", response_model=AdResponse, status_code=201)
def create_ad(request: Request, body: AdCreate, claims: Claims = Depends(get_claims)) -> AdResponse:
    """Create a listing owned by the caller. It waits in "pending" until an admin approves it."""
    ad_store: AdStore = request.app.state.ad_store
    ad = Ad(
        title=body.title,
        description=body.description,
        address=body.address,
        province=body.province,
        city=body.city,
        lat=body.lat,
        lng=body.lng,
        phone=body.phone,
        user_notes=body.user_notes,
        price=body.price,
        area=body.area,
        rooms=body.rooms,
        property_type=body.property_type.value,
        images=body.images,
        user_id=claims.user_id,
    )
    ad_id = ad_store.create_ad(ad)
    return AdResponse.from_ad(ad_store.get_ad(ad_id))


@router.get("/ads/{ad_id}", response_model=AdResponse)
def get_ad(request: Request, ad_id: int) -> AdResponse:
    ad_store: AdStore = request.app.state.ad_store
    ad = ad_store.get_ad(ad_id)
    if ad is None:
        raise _not_found()
    is_privileged = bool(authorize(try_get_claims(request), Action.MUTATE_AD, AdRef(owner_id=ad.user_id)))
    # Unapproved ads are invisible to everyone but their owner and admins.
    if ad.status != "approved" and not is_privileged:
        raise _not_found()
    ad_store.increment_views(ad_id)
    ad.view_count += 1
    return AdResponse.from_ad(ad, include_admin_notes=is_privileged)


# ---------------------------------------------------------------------------
# Owner-or-admin mutations
# ---------------------------------------------------------------------------


@router.put("/ads/{ad_id}", response_model=AdResponse)
def update_ad(request: Request, ad_id: int, body: AdUpdate, claims: Claims = Depends(get_claims)) -> AdResponse:
    """Edit a listing. Only fields present in the body change."""
    ad_store: AdStore = request.app.state.ad_store
    enforce(authorize(claims, Action.MUTATE_AD, _owner_of(ad_store, ad_id)))

    fields = body.model_dump(exclude_unset=True, exclude_none=True)
    if "property_type" in fields:
        fields["property_type"] = body.property_type.value
    if fields:
        ad_store.update_ad(ad_id, **fields)
    return AdResponse.from_ad(ad_store.get_ad(ad_id))


@router.delete("/ads/{ad_id}", response_model=MessageResponse)
def delete_ad(request: Request, ad_id: int, claims: Claims = Depends(get_claims)) -> MessageResponse:
    ad_store: AdStore = request.app.state.ad_store
    enforce(authorize(claims, Action.MUTATE_AD, _owner_of(ad_store, ad_id)))
    ad_store.delete_ad(ad_id)
    return MessageResponse(message="Ad deleted.")


# ---------------------------------------------------------------------------
# Moderation (admin only)
# ---------------------------------------------------------------------------


@router.patch("/ads/{ad_id}/status", response_model=AdResponse)
def update_ad_status(
    request: Request,
    ad_id: int,
    body: AdStatusUpdate,
    claims: Claims = Depends(require_admin),
) -> AdResponse:
    ad_store: AdStore = request.app.state.ad_store
    if not ad_store.update_status(ad_id, body.status.value, body.admin_notes):
        raise _not_found()
    return AdResponse.from_ad(ad_store.get_ad(ad_id))


@router.post("/ads/{ad_id}/rate", response_model=AdResponse)
def rate_ad(request: Request, ad_id: int, body: AdRating, claims: Claims = Depends(require_admin)) -> AdResponse:
    ad_store: AdStore = request.app.state.ad_store
    if not ad_store.update_rating(ad_id, body.stars):
        raise _not_found()
    return AdResponse.from_ad(ad_store.get_ad(ad_id))


# ---------------------------------------------------------------------------
# Engagement counters (public)
# ---------------------------------------------------------------------------


@limiter.limit("60/minute")
@router.post("/ads/{ad_id}/click", response_model=MessageResponse)
def record_click(request: Request, ad_id: int) -> MessageResponse:
    ad_store: AdStore = request.app.state.ad_store
    if not ad_store.increment_clicks(ad_id):
        raise _not_found()
    return MessageResponse(message="Click recorded.")


@limiter.limit("60/minute")
@router.post("/ads/{ad_id}/view", response_model=MessageResponse)
def record_view(request: Request, ad_id: int) -> MessageResponse:
    ad_store: AdStore = request.app.state.ad_store
    if not ad_store.increment_views(ad_id):
        raise _not_found()
    return MessageResponse(message="View recorded.")
