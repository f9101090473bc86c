import os
from functools import lru_cache
from typing import Any, Optional

from dotenv import load_dotenv
from fastapi import Body, Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse

from app_types import CacheCategory
from errors import NetworkFailure
from fetcher import CachedApiClient, create_client

load_dotenv()  # ensure .env is loaded here too

ADMIN_TOKEN = os.getenv("ADMIN_TOKEN")

app = FastAPI()


@lru_cache(maxsize=None)
def get_client() -> CachedApiClient:
    # One cache per process, built on first use
    return create_client()


def _auth(x_admin_token: Optional[str]):
    if not ADMIN_TOKEN:
        raise HTTPException(status_code=500, detail="ADMIN_TOKEN not configured")
    if x_admin_token != ADMIN_TOKEN:
        raise HTTPException(status_code=401, detail="Unauthorized")


def _upstream_error(e: NetworkFailure) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail={"message": str(e), "upstream_status": e.status_code},
    )


@app.get("/")
def read_root():
    return JSONResponse(
        content={"status": "ok", "message": "Server is healthy"},
        status_code=status.HTTP_200_OK
    )


@app.get("/api/{path:path}")
async def cached_read(path: str, request: Request, client: CachedApiClient = Depends(get_client)):
    params = dict(request.query_params)
    try:
        result = await client.get(f"/{path}", params=params or None)
    except NetworkFailure as e:
        raise _upstream_error(e)
    return {"data": result.data, "cached": result.cached, "stale": result.stale}


@app.post("/api/{path:path}")
async def create_record(path: str, payload: Any = Body(default=None), client: CachedApiClient = Depends(get_client)):
    try:
        return {"data": await client.post(f"/{path}", payload)}
    except NetworkFailure as e:
        raise _upstream_error(e)


@app.put("/api/{path:path}")
async def replace_record(path: str, payload: Any = Body(default=None), client: CachedApiClient = Depends(get_client)):
    try:
        return {"data": await client.put(f"/{path}", payload)}
    except NetworkFailure as e:
        raise _upstream_error(e)


@app.patch("/api/{path:path}")
async def update_record(path: str, payload: Any = Body(default=None), client: CachedApiClient = Depends(get_client)):
    try:
        return {"data": await client.patch(f"/{path}", payload)}
    except NetworkFailure as e:
        raise _upstream_error(e)


@app.delete("/api/{path:path}")
async def delete_record(path: str, client: CachedApiClient = Depends(get_client)):
    try:
        return {"data": await client.delete(f"/{path}")}
    except NetworkFailure as e:
        raise _upstream_error(e)


@app.post("/admin/cache/clear")
def admin_cache_clear(
    category: Optional[CacheCategory] = None,
    x_admin_token: Optional[str] = Header(default=None),
    client: CachedApiClient = Depends(get_client),
):
    _auth(x_admin_token)
    client.clear_cache(category)
    return {"ok": True, "category": category.value if category else None}


@app.post("/admin/cache/invalidate")
def admin_cache_invalidate(
    url: str,
    x_admin_token: Optional[str] = Header(default=None),
    client: CachedApiClient = Depends(get_client),
):
    _auth(x_admin_token)
    entity = client.invalidator.extract_entity_type(url)
    purged = client.invalidate(url, "ADMIN")
    return {"ok": True, "entity": entity, "purged": purged}


@app.get("/admin/cache/stats")
def admin_cache_stats(x_admin_token: Optional[str] = Header(default=None), client: CachedApiClient = Depends(get_client)):
    _auth(x_admin_token)
    return client.get_stats()


@app.get("/health")
def health():
    """Lightweight health check."""
    return {
        "status": "ok",
        "service": "farm-api-cache",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host=os.getenv("HOST", "127.0.0.1"), port=int(os.getenv("PORT", "8000")))
