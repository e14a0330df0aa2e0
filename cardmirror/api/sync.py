"""
Sync API endpoints.

A single trigger endpoint for every sync mode, called by the external
scheduler on a timer or manually by an operator, plus a read-only
status summary.
"""

from collections.abc import AsyncGenerator
from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession

from cardmirror.db.database import get_session
from cardmirror.db.operations import get_sync_status
from cardmirror.models.sync import SyncMode, SyncResult
from cardmirror.services.catalog_client import CatalogClient
from cardmirror.services.sync_engine import SyncEngine

router = APIRouter(prefix="/sync", tags=["sync"])


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SyncRequest(_CamelModel):
    """Optional JSON body for POST /sync. Query parameters take precedence."""

    mode: SyncMode = SyncMode.PRICES
    set_id: str | None = None
    limit: int | None = Field(default=None, ge=1, le=500)


class SyncResponse(_CamelModel):
    """Outcome of one sync invocation."""

    success: bool
    cards_updated: int = 0
    count: int = 0
    sets_processed: int = 0
    sets_completed: int = 0
    sets_failed: int = 0
    message: str = ""
    set_id: str | None = None

    @classmethod
    def from_result(cls, result: SyncResult) -> "SyncResponse":
        return cls(
            success=result.success,
            cards_updated=result.cards_updated,
            count=result.count,
            sets_processed=result.sets_processed,
            sets_completed=result.sets_completed,
            sets_failed=result.sets_failed,
            message=result.message,
            set_id=result.set_id,
        )


class SyncMetadataEntry(BaseModel):
    entity_type: str
    status: str
    message: str | None = None
    last_sync: datetime | None = None


class SyncStatusResponse(BaseModel):
    """Mirror completeness summary for operators."""

    sync_metadata: list[SyncMetadataEntry]
    sets: dict[str, int]
    cards: dict[str, int]
    is_complete: bool


async def get_catalog_client() -> AsyncGenerator[CatalogClient, None]:
    """Dependency that provides a catalog client closed after the request."""
    async with CatalogClient() as catalog:
        yield catalog


def get_sync_engine(
    catalog: Annotated[CatalogClient, Depends(get_catalog_client)],
) -> SyncEngine:
    """Dependency that provides a sync engine bound to the app database."""
    return SyncEngine(catalog)


async def _run(
    engine: SyncEngine, mode: SyncMode, set_id: str | None, limit: int | None
) -> SyncResponse:
    try:
        result = await engine.run(mode, set_id=set_id, limit=limit)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return SyncResponse.from_result(result)


@router.get("", response_model=SyncResponse)
async def trigger_sync_get(
    engine: Annotated[SyncEngine, Depends(get_sync_engine)],
    mode: SyncMode = SyncMode.PRICES,
    set_id: Annotated[str | None, Query(alias="setId")] = None,
    limit: Annotated[int | None, Query(ge=1, le=500)] = None,
) -> SyncResponse:
    """
    Trigger a sync from a scheduler or browser.

    ``limit`` is chunks per call for prices/card-metadata, max sets for full.
    """
    return await _run(engine, mode, set_id, limit)


@router.post("", response_model=SyncResponse)
async def trigger_sync_post(
    engine: Annotated[SyncEngine, Depends(get_sync_engine)],
    body: SyncRequest | None = None,
    mode: SyncMode | None = None,
    set_id: Annotated[str | None, Query(alias="setId")] = None,
    limit: Annotated[int | None, Query(ge=1, le=500)] = None,
) -> SyncResponse:
    """
    Trigger a sync with options in the JSON body or query string.

    Query parameters override body fields.
    """
    request = body or SyncRequest()
    return await _run(
        engine,
        mode or request.mode,
        set_id or request.set_id,
        limit or request.limit,
    )


@router.get("/status", response_model=SyncStatusResponse)
async def sync_status(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> dict[str, Any]:
    """Per-mode last-run status plus set and card completeness counts."""
    return await get_sync_status(session)
