from fastapi import FastAPI, HTTPException, Query, Security, Depends, Request
from fastapi.security import APIKeyHeader
from starlette.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
import os
import sys

# Rate Limiting
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

# Add current directory to path
sys.path.insert(0, os.getcwd())

from main import process_zone, configure_logging
from topology_module.config import TopologySettings
from topology_module.discovery import discover_services
from topology_module.external_resolver import ExternalResolver
from topology_module.logger import get_child_logger
from topology_module.records import DNSRecord
from topology_module.session import TopologySession

RATE_LIMIT = os.getenv("RATE_LIMIT", "60/minute")

# Setup Limiter (using X-Forwarded-For if available via ProxyHeaders)
limiter = Limiter(key_func=get_remote_address)
app = FastAPI(title="DNS Zone Topology")

# Add Rate Limit Exception Handler
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS (Allow browser access if needed)
origins = os.getenv("CORS_ORIGINS", "*").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

log = get_child_logger("api")

# Global instances
settings: Optional[TopologySettings] = None
resolver: Optional[ExternalResolver] = None

# Security Scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


class TopologyRequest(BaseModel):
    zone: str
    records: List[Dict[str, Any]] = Field(default_factory=list)
    max_hops: Optional[int] = None
    dark_mode: bool = False


class ServicesRequest(BaseModel):
    zone: str
    records: List[Dict[str, Any]] = Field(default_factory=list)


async def check_api_key(api_key: str = Security(api_key_header)):
    """
    Validates API Key if 'API_KEY' env var is set.
    If 'API_KEY' is NOT set, allows open access (with warning logs).
    """
    expected_key = os.getenv("API_KEY")
    if expected_key:
        if api_key != expected_key:
            raise HTTPException(status_code=403, detail="Invalid API Key")
    return api_key


def get_settings() -> TopologySettings:
    global settings
    if settings is None:
        settings = TopologySettings.from_env()
    return settings


def get_resolver() -> ExternalResolver:
    global resolver
    if resolver is None:
        resolver = ExternalResolver(get_settings())
    return resolver


def _parse_records(raw: List[Dict[str, Any]]) -> List[DNSRecord]:
    return [DNSRecord.from_dict(item) for item in raw if isinstance(item, dict)]


@app.on_event("startup")
async def startup_event():
    configure_logging()
    log.info("Starting up API...")

    if not os.getenv("API_KEY"):
        log.warning("No API_KEY configured! API is accessible without authentication (Rate Limits apply).")

    cfg = get_settings()
    log.info("Resolver mode={} nameservers={} max_hops={}", cfg.resolver_mode, cfg.nameservers, cfg.max_hops)


@app.on_event("shutdown")
async def shutdown_event():
    if resolver is not None:
        await resolver.close()


@app.get("/health")
@limiter.exempt
def health_check():
    return {"status": "ok"}


@app.post("/topology", dependencies=[Depends(check_api_key)])
@limiter.limit(RATE_LIMIT)
async def build_zone_topology(request: Request, body: TopologyRequest, enrich: bool = False):
    if not body.zone.strip():
        raise HTTPException(status_code=422, detail="zone is required")

    session = TopologySession(get_settings(), resolver=get_resolver())
    return await process_zone(
        _parse_records(body.records),
        body.zone,
        session,
        max_hops=body.max_hops,
        dark_mode=body.dark_mode,
        enrich=enrich,
    )


@app.get("/resolve", dependencies=[Depends(check_api_key)])
@limiter.limit(RATE_LIMIT)
async def resolve_name(
    request: Request,
    name: str,
    max_hops: Optional[int] = Query(default=None, ge=1, le=15),
):
    result = await get_resolver().resolve_external(name, max_hops)
    return result.to_dict()


@app.post("/services", dependencies=[Depends(check_api_key)])
@limiter.limit(RATE_LIMIT)
async def zone_services(request: Request, body: ServicesRequest, probe: bool = False):
    signals = await discover_services(_parse_records(body.records), body.zone, probe=probe)
    return {"zone": body.zone, "services": [s.to_dict() for s in signals]}
