"""
FastAPI REST API for the HelloWorld overlay

Exposes the lookup service and topic manager over HTTP in the shape overlay
hosts use: lookups, admission checks, discovery metadata, documentation,
health and Prometheus metrics.
"""

import logging
import os
import time
from typing import Any, Dict, List

from fastapi import Body, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from helloworld import version_short
from helloworld.lib.errors import StorageError, ValidationError
from helloworld.server.env import Env
from helloworld.server.lookup_service import SERVICE, LookupService
from helloworld.server.metrics import MetricNames, MetricsCollector
from helloworld.server.record_store import RecordStore
from helloworld.server.storage import db_class
from helloworld.server.topic_manager import TOPIC, TopicManager


# =============================================================================
# REQUEST / RESPONSE MODELS
# =============================================================================

class HealthResponse(BaseModel):
    status: str
    uptime_seconds: float
    database: str
    records: int = 0


class AdmitRequest(BaseModel):
    beef: str = Field(..., description='Hex-encoded raw transaction, BEEF or Atomic BEEF')
    previous_coins: List[int] = Field(default_factory=list, alias='previousCoins')


class AdmitResponse(BaseModel):
    outputsToAdmit: List[int]
    coinsToRetain: List[int]


def _services(request: Request):
    state = request.app.state
    return state.lookup_service, state.topic_manager, state.metrics


# =============================================================================
# APP FACTORY
# =============================================================================

def create_app(lookup_service: LookupService, topic_manager: TopicManager,
               metrics: MetricsCollector, allowed_origins: List[str] = None) -> FastAPI:
    """Factory function to create the FastAPI app."""
    app = FastAPI(
        title="HelloWorld Overlay API",
        description="Lookup and admission endpoints for HelloWorld message tokens",
        version=version_short,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.lookup_service = lookup_service
    app.state.topic_manager = topic_manager
    app.state.metrics = metrics
    app.state.start_time = time.time()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins or [],
        allow_credentials=False,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    # -------------------------------------------------------------------------
    # HEALTH & METRICS
    # -------------------------------------------------------------------------

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check(request: Request):
        """Check API health and database connectivity."""
        lookup, _, collector = _services(request)
        uptime = time.time() - request.app.state.start_time
        try:
            records = await lookup.storage.count()
        except StorageError:
            return HealthResponse(status="degraded", uptime_seconds=round(uptime, 2),
                                  database="error")
        collector.set_gauge(MetricNames.RECORDS, records)
        return HealthResponse(status="healthy", uptime_seconds=round(uptime, 2),
                              database="connected", records=records)

    @app.get("/metrics", response_class=PlainTextResponse, tags=["Health"])
    async def get_metrics(request: Request):
        _, _, collector = _services(request)
        return collector.generate_metrics()

    # -------------------------------------------------------------------------
    # LOOKUP & ADMISSION
    # -------------------------------------------------------------------------

    @app.post("/lookup", tags=["Lookup"])
    async def lookup(request: Request, question: Dict[str, Any] = Body(...)):
        """Answer a lookup question addressed to ls_helloworld."""
        lookup_service, _, _ = _services(request)
        try:
            return await lookup_service.lookup(question)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except StorageError as e:
            raise HTTPException(status_code=503, detail=str(e))

    @app.post("/admit", response_model=AdmitResponse, tags=["Admission"])
    async def admit(request: Request, body: AdmitRequest):
        """Report which outputs of a transaction tm_helloworld would admit."""
        _, topic_manager, _ = _services(request)
        try:
            beef = bytes.fromhex(body.beef)
        except ValueError:
            raise HTTPException(status_code=400, detail="beef must be hex")
        decision = topic_manager.identify_admissible_outputs(beef, body.previous_coins)
        return decision.to_dict()

    # -------------------------------------------------------------------------
    # DISCOVERY
    # -------------------------------------------------------------------------

    @app.get("/listTopics", tags=["Discovery"])
    async def list_topics(request: Request):
        _, topic_manager, _ = _services(request)
        return {TOPIC: topic_manager.get_metadata()}

    @app.get("/listLookupServiceProviders", tags=["Discovery"])
    async def list_lookup_services(request: Request):
        lookup_service, _, _ = _services(request)
        return {SERVICE: lookup_service.get_metadata()}

    @app.get("/getDocumentationForTopicManager", response_class=PlainTextResponse,
             tags=["Discovery"])
    async def topic_manager_docs(request: Request, manager: str = Query(...)):
        _, topic_manager, _ = _services(request)
        if manager != TOPIC:
            raise HTTPException(status_code=404, detail="No documentation found!")
        return topic_manager.get_documentation()

    @app.get("/getDocumentationForLookupServiceProvider", response_class=PlainTextResponse,
             tags=["Discovery"])
    async def lookup_service_docs(request: Request,
                                  lookup_service_name: str = Query(..., alias="lookupService")):
        lookup_service, _, _ = _services(request)
        if lookup_service_name != SERVICE:
            raise HTTPException(status_code=404, detail="No documentation found!")
        return lookup_service.get_documentation()

    return app


# =============================================================================
# STARTUP
# =============================================================================

def build_services(env: Env):
    """Open the database and wire the services together."""
    metrics = MetricsCollector(env)
    db_cls = db_class(env.db_engine)
    db = db_cls(os.path.join(env.db_dir, env.db_name), True)
    storage = RecordStore(db, timeout=env.storage_timeout)
    lookup_service = LookupService(storage, metrics, default_limit=env.default_lookup_limit,
                                   max_limit=env.max_lookup_limit)
    topic_manager = TopicManager(metrics)
    return lookup_service, topic_manager, metrics


def main():
    """Run the REST API under uvicorn."""
    import uvicorn

    env = Env()
    logging.basicConfig(level=env.log_level,
                        format='%(levelname)s:%(name)s:%(message)s')
    logger = logging.getLogger('helloworld')
    logger.info(f'HelloWorld overlay {version_short} starting')

    lookup_service, topic_manager, metrics = build_services(env)
    app = create_app(lookup_service, topic_manager, metrics, env.allowed_origins)
    try:
        uvicorn.run(app, host=env.rest_host, port=env.rest_port)
    finally:
        lookup_service.storage.close()
        logger.info('HelloWorld overlay stopped')


if __name__ == "__main__":
    main()
