"""HTTP read API over the materialized tables."""

from __future__ import annotations

import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from credind import __version__
from credind.api.queries import ReadService
from credind.core.config import ApiConfig
from credind.core.errors import NotFoundError, StoreError
from credind.core.interfaces import IEntityStore

logger = logging.getLogger(__name__)

bearer = HTTPBearer(auto_error=False)


class ResolverInfo(BaseModel):
    """Public resolver summary."""
    label: str
    resolverUpdated: str
    review: str


class HealthStats(BaseModel):
    credentials: int
    resolvers: int


class Health(BaseModel):
    status: str
    timestamp: str
    service: str
    stats: HealthStats


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_service(request: Request) -> ReadService:
    return request.app.state.service


def require_api_key(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
) -> None:
    """Reject requests without a matching `Authorization: Bearer <key>` header."""
    config: ApiConfig = request.app.state.config
    if not config.api_key:
        logger.error("API key is not configured; rejecting %s", request.url.path)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server misconfiguration: API key not set",
        )
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid Authorization header",
        )
    if not secrets.compare_digest(credentials.credentials, config.api_key):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

public_router = APIRouter(tags=["Public"])
credentials_router = APIRouter(
    prefix="/api/credentials",
    tags=["Credentials"],
    dependencies=[Depends(require_api_key)],
)
resolvers_router = APIRouter(
    prefix="/api/resolvers",
    tags=["Resolvers"],
    dependencies=[Depends(require_api_key)],
)
stats_router = APIRouter(prefix="/api", tags=["Stats"], dependencies=[Depends(require_api_key)])


@public_router.get("/")
async def root():
    return {
        "message": "credind API",
        "version": __version__,
        "endpoints": {
            "health": "/api/health",
            "stats": "/api/stats",
            "credentials": "/api/credentials",
            "credentialByLabel": "/api/credentials/by-label/{label}",
            "credentialsByOwner": "/api/credentials/by-owner/{address}",
            "credential": "/api/credentials/{chainId}/{labelhash}",
            "credentialMetadata": "/api/credentials/{chainId}/{labelhash}/metadata",
            "resolvers": "/api/resolvers",
            "resolver": "/api/resolvers/{chainId}/{address}",
            "resolverInfo": "/api/resolvers/{chainId}/{address}/info",
            "resolverText": "/api/resolvers/{chainId}/{address}/text",
            "resolverMetadata": "/api/resolvers/{chainId}/{address}/metadata",
        },
    }


@public_router.get("/api/health", response_model=Health)
async def health(service: ReadService = Depends(get_service)):
    return service.health()


@public_router.get("/api/credentials/{chain_id}/{labelhash}/metadata")
async def credential_metadata(chain_id: int, labelhash: str, service: ReadService = Depends(get_service)):
    return service.credential_metadata(chain_id, labelhash)


@public_router.get("/api/resolvers/{chain_id}/{address}/info", response_model=ResolverInfo)
async def resolver_info(chain_id: int, address: str, service: ReadService = Depends(get_service)):
    return service.resolver_info(chain_id, address)


@stats_router.get("/stats")
async def stats(service: ReadService = Depends(get_service)):
    return service.stats()


# by-label / by-owner are declared before the {chain_id}/{labelhash} route


@credentials_router.get("")
async def list_credentials(
    chainId: Optional[int] = None,
    expired: Optional[bool] = None,
    limit: Optional[int] = Query(None, ge=0),
    offset: int = Query(0, ge=0),
    service: ReadService = Depends(get_service),
):
    return service.list_credentials(chain_id=chainId, expired=expired, limit=limit, offset=offset)


@credentials_router.get("/by-label/{label}")
async def credential_by_label(label: str, chainId: Optional[int] = None, service: ReadService = Depends(get_service)):
    return service.credential_by_label(label, chainId)


@credentials_router.get("/by-owner/{address}")
async def credentials_by_owner(
    address: str,
    chainId: Optional[int] = None,
    limit: Optional[int] = Query(None, ge=0),
    offset: int = Query(0, ge=0),
    service: ReadService = Depends(get_service),
):
    return service.credentials_by_owner(address, chain_id=chainId, limit=limit, offset=offset)


@credentials_router.get("/{chain_id}/{labelhash}")
async def credential(chain_id: int, labelhash: str, service: ReadService = Depends(get_service)):
    return service.credential(chain_id, labelhash)


@resolvers_router.get("")
async def list_resolvers(
    chainId: Optional[int] = None,
    owner: Optional[str] = None,
    limit: Optional[int] = Query(None, ge=0),
    offset: int = Query(0, ge=0),
    service: ReadService = Depends(get_service),
):
    return service.list_resolvers(chain_id=chainId, owner=owner, limit=limit, offset=offset)


@resolvers_router.get("/{chain_id}/{address}")
async def resolver(chain_id: int, address: str, service: ReadService = Depends(get_service)):
    return service.resolver(chain_id, address)


@resolvers_router.get("/{chain_id}/{address}/text")
async def resolver_text(chain_id: int, address: str, service: ReadService = Depends(get_service)):
    return service.text_records(chain_id, address)


@resolvers_router.get("/{chain_id}/{address}/metadata")
async def resolver_metadata(chain_id: int, address: str, service: ReadService = Depends(get_service)):
    return service.contract_metadata(chain_id, address)


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(store: IEntityStore, config: ApiConfig | None = None) -> FastAPI:
    """Build the API around an already opened entity store."""
    config = config or ApiConfig()
    app = FastAPI(
        title="credind API",
        description="Read API for indexed credentials and resolvers",
        version=__version__,
    )
    app.state.config = config
    app.state.service = ReadService(store, config)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"error": str(exc)})

    @app.exception_handler(ValueError)
    async def _bad_request(request: Request, exc: ValueError):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": str(exc)})

    @app.exception_handler(StoreError)
    async def _store_error(request: Request, exc: StoreError):
        logger.error("Store error on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error", "details": str(exc)},
        )

    # public routes first so the metadata/info paths win over the protected ones
    app.include_router(public_router)
    app.include_router(stats_router)
    app.include_router(credentials_router)
    app.include_router(resolvers_router)
    return app
