"""
ads/store.py -- SQLAlchemy-backed persistence layer for property listings.

Uses SQLAlchemy Core (not ORM) so the domain dataclasses in ads/models.py
remain the authoritative domain representation. Swapping SQLite for
PostgreSQL or MySQL is a connection string change, not a rewrite.

Pattern: Repository + Data Mapper. AdStore is the repository; _row_to_ad is
the mapper. Route handlers never touch SQL directly.

Security: all queries use bound parameters. Search terms go through
contains(..., autoescape=True) so % and _ typed by a visitor match literally.

Ownership is NOT checked here. Route handlers ask auth/guard.py first and
only then call the mutating methods.

Usage:
    store = AdStore("sqlite:///amlak.db")
    ad_id = store.create_ad(ad)
    store.update_status(ad_id, "approved")
    page = store.list_approved(limit=20, offset=0, province="Tehran")
    store.close()
"""

import json
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Column,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    case,
    create_engine,
    event,
    func,
    or_,
    select,
)
from sqlalchemy.engine import Engine

from ads.models import AD_STATUSES, Ad, AdStats

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_ads = Table(
    "ads",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("title", String(255), nullable=False),
    Column("description", Text, nullable=False),
    Column("address", String(500), nullable=False),
    Column("province", String(100), nullable=False, index=True),
    Column("city", String(100), nullable=False),
    Column("lat", Float, nullable=False),
    Column("lng", Float, nullable=False),
    Column("images", Text),  # JSON array serialized as text
    Column("phone", String(15), nullable=False),
    Column("user_notes", Text),
    Column("admin_notes", Text),
    Column("status", String(10), nullable=False, server_default="pending", index=True),
    Column("stars", Integer, nullable=False, server_default="0"),
    Column("view_count", Integer, nullable=False, server_default="0"),
    Column("click_count", Integer, nullable=False, server_default="0"),
    Column("price", Float),
    Column("area", Float),
    Column("rooms", Integer),
    Column("property_type", String(20), nullable=False, server_default="apartment", index=True),
    Column("user_id", Integer, index=True),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    sqlite_autoincrement=True,
)

# Fields the owner (or an admin) may edit through PUT /ads/{id}. Moderation
# fields (status, admin_notes, stars) have their own admin-only methods.
_EDITABLE = {
    "title",
    "description",
    "address",
    "province",
    "city",
    "lat",
    "lng",
    "images",
    "phone",
    "user_notes",
    "price",
    "area",
    "rooms",
    "property_type",
}


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class AdStore:
    """Repository for Ad entities."""

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_ad(self, ad: Ad) -> int:
        """Insert a new ad (always pending) and return its ID."""
        now = _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                _ads.insert().values(
                    title=ad.title,
                    description=ad.description,
                    address=ad.address,
                    province=ad.province,
                    city=ad.city,
                    lat=ad.lat,
                    lng=ad.lng,
                    images=json.dumps(ad.images or []),
                    phone=ad.phone,
                    user_notes=ad.user_notes,
                    admin_notes=ad.admin_notes,
                    price=ad.price,
                    area=ad.area,
                    rooms=ad.rooms,
                    property_type=ad.property_type,
                    status="pending",
                    user_id=ad.user_id,
                    created_at=now,
                    updated_at=now,
                )
            )
            return result.inserted_primary_key[0]

    def update_ad(self, ad_id: int, **fields) -> bool:
        """Partially update the editable fields of an ad.

        Unknown or moderation-only fields raise ValueError. Returns True if a
        row was updated, False if ad_id was not found.
        """
        unknown = set(fields) - _EDITABLE
        if unknown:
            raise ValueError(f"Fields not editable: {sorted(unknown)!r}")
        if "images" in fields:
            fields["images"] = json.dumps(fields["images"] or [])
        with self.engine.begin() as conn:
            result = conn.execute(_ads.update().where(_ads.c.id == ad_id).values(updated_at=_now_iso(), **fields))
        return result.rowcount > 0

    def update_status(self, ad_id: int, status: str, admin_notes: Optional[str] = None) -> bool:
        """Set the moderation status. admin_notes is only overwritten when given."""
        if status not in AD_STATUSES:
            raise ValueError(f"Unknown ad status: {status!r}")
        values: dict = {"status": status, "updated_at": _now_iso()}
        if admin_notes is not None:
            values["admin_notes"] = admin_notes
        with self.engine.begin() as conn:
            result = conn.execute(_ads.update().where(_ads.c.id == ad_id).values(**values))
        return result.rowcount > 0

    def update_rating(self, ad_id: int, stars: int) -> bool:
        if not 1 <= stars <= 5:
            raise ValueError("stars must be between 1 and 5")
        with self.engine.begin() as conn:
            result = conn.execute(_ads.update().where(_ads.c.id == ad_id).values(stars=stars))
        return result.rowcount > 0

    def increment_views(self, ad_id: int) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                _ads.update().where(_ads.c.id == ad_id).values(view_count=_ads.c.view_count + 1)
            )
        return result.rowcount > 0

    def increment_clicks(self, ad_id: int) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                _ads.update().where(_ads.c.id == ad_id).values(click_count=_ads.c.click_count + 1)
            )
        return result.rowcount > 0

    def delete_ad(self, ad_id: int) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(_ads.delete().where(_ads.c.id == ad_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_ad(self, ad_id: int) -> Optional[Ad]:
        with self.engine.connect() as conn:
            row = conn.execute(_ads.select().where(_ads.c.id == ad_id)).fetchone()
        return _row_to_ad(row) if row is not None else None

    def get_owner_id(self, ad_id: int) -> Optional[int]:
        """Return the owner's user id, or None for an orphaned ad.

        Raises LookupError when the ad does not exist so callers can tell a
        missing ad (404) apart from an orphaned one.
        """
        with self.engine.connect() as conn:
            row = conn.execute(select(_ads.c.user_id).where(_ads.c.id == ad_id)).fetchone()
        if row is None:
            raise LookupError(ad_id)
        return row.user_id

    def list_approved(
        self,
        limit: int = 20,
        offset: int = 0,
        query: Optional[str] = None,
        province: Optional[str] = None,
        property_type: Optional[str] = None,
    ) -> list[Ad]:
        """Public catalog: approved ads, newest first, optionally filtered."""
        stmt = _ads.select().where(_ads.c.status == "approved")
        if query:
            stmt = stmt.where(
                or_(
                    _ads.c.title.contains(query, autoescape=True),
                    _ads.c.description.contains(query, autoescape=True),
                    _ads.c.address.contains(query, autoescape=True),
                    _ads.c.province.contains(query, autoescape=True),
                    _ads.c.city.contains(query, autoescape=True),
                )
            )
        if province:
            stmt = stmt.where(_ads.c.province == province)
        if property_type:
            stmt = stmt.where(_ads.c.property_type == property_type)
        stmt = stmt.order_by(_ads.c.created_at.desc(), _ads.c.id.desc()).limit(limit).offset(offset)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_ad(r) for r in rows]

    def list_all(self, limit: int = 20, offset: int = 0) -> list[Ad]:
        """Every ad regardless of status, newest first. Admin-only view."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _ads.select().order_by(_ads.c.created_at.desc(), _ads.c.id.desc()).limit(limit).offset(offset)
            ).fetchall()
        return [_row_to_ad(r) for r in rows]

    def list_by_owner(self, user_id: int) -> list[Ad]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _ads.select().where(_ads.c.user_id == user_id).order_by(_ads.c.created_at.desc(), _ads.c.id.desc())
            ).fetchall()
        return [_row_to_ad(r) for r in rows]

    def count_by_owner(self, user_id: int) -> int:
        """Number of ads owned by user_id. Backs the user-deletion guard."""
        with self.engine.connect() as conn:
            count = conn.execute(select(func.count()).select_from(_ads).where(_ads.c.user_id == user_id)).scalar()
        return count or 0

    def get_stats(self, user_id: Optional[int] = None) -> AdStats:
        """Status breakdown plus total views/clicks, globally or for one owner."""

        def _status_count(status: str):
            return func.coalesce(func.sum(case((_ads.c.status == status, 1), else_=0)), 0)

        stmt = select(
            func.count(_ads.c.id),
            _status_count("approved"),
            _status_count("pending"),
            _status_count("rejected"),
            func.coalesce(func.sum(_ads.c.view_count), 0),
            func.coalesce(func.sum(_ads.c.click_count), 0),
        )
        if user_id is not None:
            stmt = stmt.where(_ads.c.user_id == user_id)
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
        return AdStats(
            total=int(row[0] or 0),
            approved=int(row[1] or 0),
            pending=int(row[2] or 0),
            rejected=int(row[3] or 0),
            total_views=int(row[4] or 0),
            total_clicks=int(row[5] or 0),
        )

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_ad(row) -> Ad:
    return Ad(
        id=row.id,
        title=row.title,
        description=row.description,
        address=row.address,
        province=row.province,
        city=row.city,
        lat=row.lat,
        lng=row.lng,
        images=json.loads(row.images) if row.images else [],
        phone=row.phone,
        user_notes=row.user_notes,
        admin_notes=row.admin_notes,
        price=row.price,
        area=row.area,
        rooms=row.rooms,
        property_type=row.property_type,
        status=row.status,
        stars=row.stars or 0,
        view_count=row.view_count or 0,
        click_count=row.click_count or 0,
        user_id=row.user_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
