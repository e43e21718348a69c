"""
FastAPI application for the RuleVault server.
"""

import base64
import binascii
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from ..database import get_database
from ..exceptions import NotFoundError, ValidationError
from ..models import ConversationEntry, VersionRecord
from ..oracle import AsyncOracleClient
from ..reporting import compliance_band, filter_rules, version_report
from ..store import ArtifactStore, PersistentArtifactStore
from ..workflow import Oracle, ReviewWorkflow
from .config import ServerConfig

logger = logging.getLogger("rulevault.server.app")


class DocumentSubmit(BaseModel):
    filename: str
    content: str = Field("", description="Base64-encoded document bytes")
    content_type: str = "application/pdf"


class QuerySubmit(BaseModel):
    text: str


class ActionResponse(BaseModel):
    applied: bool
    entry: Optional[Dict[str, Any]] = None


class VersionSummary(BaseModel):
    id: str
    version: str
    filename: str
    upload_date: str
    rule_count: int
    status: str
    changes: Dict[str, int]
    compliance_score: Optional[float] = None
    compliance_band: Optional[str] = None
    breach_count: int = 0


def _summary(version: VersionRecord) -> VersionSummary:
    band = compliance_band(version.compliance_score)
    return VersionSummary(
        id=version.id,
        version=version.label,
        filename=version.filename,
        upload_date=version.upload_date.isoformat(),
        rule_count=version.rule_count,
        status=version.status.value,
        changes=version.changes.to_dict(),
        compliance_score=version.compliance_score,
        compliance_band=band.value if band else None,
        breach_count=len(version.breaches),
    )


def _action(entry: Optional[ConversationEntry]) -> ActionResponse:
    return ActionResponse(applied=entry is not None, entry=entry.to_dict() if entry else None)


def create_app(
    config: Optional[ServerConfig] = None,
    oracle: Optional[Oracle] = None,
    store: Optional[ArtifactStore] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    ``oracle`` and ``store`` default to an HTTP agent client and a
    database-backed store built from ``config``.
    """
    if config is None:
        config = ServerConfig.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned_client: Optional[AsyncOracleClient] = None
        agent = oracle
        if agent is None:
            owned_client = AsyncOracleClient(
                base_url=config.oracle_url,
                api_key=config.oracle_api_key,
                agent_id=config.oracle_agent_id,
                timeout=config.oracle_timeout,
            )
            agent = owned_client
        versions = store
        if versions is None:
            versions = PersistentArtifactStore(get_database(config.database_url))

        app.state.config = config
        app.state.workflow = ReviewWorkflow(
            agent,
            store=versions,
            portfolio_context=config.portfolio_context,
        )
        logger.info("RuleVault ready with %d committed versions", len(versions))
        yield
        if owned_client is not None:
            await owned_client.close()

    app = FastAPI(
        title="RuleVault Server",
        description="Human-in-the-loop review and versioning of extracted compliance rules",
        version="0.1.0",
        debug=config.debug,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def get_workflow() -> ReviewWorkflow:
        return app.state.workflow

    def validate_api_key(x_api_key: str = Header(None)) -> str:
        if x_api_key is None or x_api_key not in app.state.config.api_keys:
            raise HTTPException(status_code=401, detail="Invalid or missing API key")
        return x_api_key

    def get_version_or_404(workflow: ReviewWorkflow, version_id: str) -> VersionRecord:
        try:
            return workflow.get_version(version_id)
        except NotFoundError:
            raise HTTPException(status_code=404, detail=f"Version {version_id} not found")

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    # ==================== Conversation ====================

    @app.post("/api/v1/documents")
    async def submit_document(
        document: DocumentSubmit,
        workflow: ReviewWorkflow = Depends(get_workflow),
        api_key: str = Depends(validate_api_key),
    ):
        try:
            content = base64.b64decode(document.content, validate=True)
        except (binascii.Error, ValueError):
            raise HTTPException(status_code=400, detail="content must be base64-encoded")
        try:
            entry = await workflow.submit_document(
                document.filename, content, document.content_type
            )
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=e.message)
        return entry.to_dict()

    @app.post("/api/v1/queries")
    async def submit_query(
        query: QuerySubmit,
        workflow: ReviewWorkflow = Depends(get_workflow),
        api_key: str = Depends(validate_api_key),
    ):
        try:
            entry = await workflow.submit_freeform_query(query.text)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=e.message)
        return entry.to_dict()

    @app.get("/api/v1/conversation")
    async def list_conversation(
        pending_only: bool = Query(False),
        workflow: ReviewWorkflow = Depends(get_workflow),
        api_key: str = Depends(validate_api_key),
    ) -> List[Dict[str, Any]]:
        entries = workflow.conversation.pending() if pending_only else workflow.entries()
        return [e.to_dict() for e in entries]

    @app.post("/api/v1/conversation/{entry_id}/approve", response_model=ActionResponse)
    async def approve(
        entry_id: str,
        workflow: ReviewWorkflow = Depends(get_workflow),
        api_key: str = Depends(validate_api_key),
    ):
        return _action(await workflow.approve_for_validation(entry_id))

    @app.post("/api/v1/conversation/{entry_id}/commit", response_model=ActionResponse)
    async def commit(
        entry_id: str,
        workflow: ReviewWorkflow = Depends(get_workflow),
        api_key: str = Depends(validate_api_key),
    ):
        return _action(await workflow.commit(entry_id))

    @app.post("/api/v1/conversation/{entry_id}/discard", response_model=ActionResponse)
    async def discard(
        entry_id: str,
        workflow: ReviewWorkflow = Depends(get_workflow),
        api_key: str = Depends(validate_api_key),
    ):
        return _action(await workflow.discard(entry_id))

    # ==================== Versions ====================

    @app.get("/api/v1/versions", response_model=List[VersionSummary])
    async def list_versions(
        workflow: ReviewWorkflow = Depends(get_workflow),
        api_key: str = Depends(validate_api_key),
    ):
        return [_summary(v) for v in workflow.list_versions()]

    @app.get("/api/v1/versions/current")
    async def current_version(
        workflow: ReviewWorkflow = Depends(get_workflow),
        api_key: str = Depends(validate_api_key),
    ):
        current = workflow.select_current()
        if current is None:
            raise HTTPException(status_code=404, detail="No version has been committed yet")
        return current.to_dict()

    @app.get("/api/v1/versions/{version_id}")
    async def get_version(
        version_id: str,
        workflow: ReviewWorkflow = Depends(get_workflow),
        api_key: str = Depends(validate_api_key),
    ):
        return get_version_or_404(workflow, version_id).to_dict()

    @app.get("/api/v1/versions/{version_id}/rules")
    async def get_version_rules(
        version_id: str,
        q: Optional[str] = Query(None),
        category: Optional[str] = Query(None),
        workflow: ReviewWorkflow = Depends(get_workflow),
        api_key: str = Depends(validate_api_key),
    ):
        version = get_version_or_404(workflow, version_id)
        rules = filter_rules(version.rules, query=q, category=category)
        return {"version_id": version.id, "total": len(rules), "rules": [r.to_dict() for r in rules]}

    @app.get("/api/v1/versions/{version_id}/report")
    async def get_version_report(
        version_id: str,
        workflow: ReviewWorkflow = Depends(get_workflow),
        api_key: str = Depends(validate_api_key),
    ):
        return version_report(get_version_or_404(workflow, version_id))

    @app.get("/api/v1/versions/{old_version_id}/diff/{new_version_id}")
    async def diff_versions(
        old_version_id: str,
        new_version_id: str,
        workflow: ReviewWorkflow = Depends(get_workflow),
        api_key: str = Depends(validate_api_key),
    ):
        try:
            result = workflow.diff(old_version_id, new_version_id)
        except NotFoundError as e:
            raise HTTPException(status_code=404, detail=e.message)
        return {"old": old_version_id, "new": new_version_id, **result.to_dict()}

    return app


class RuleVaultServer:
    """High-level server class for running RuleVault."""

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 8000,
        database_url: Optional[str] = None,
        api_keys: Optional[set] = None,
        **kwargs,
    ):
        self.config = ServerConfig(
            host=host,
            port=port,
            database_url=database_url,
            api_keys=api_keys or ServerConfig().api_keys,
            **kwargs,
        )
        self.app = create_app(self.config)

    def run(self):
        """Run the server (blocking)."""
        import uvicorn

        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level,
        )
