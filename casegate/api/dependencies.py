"""
API Dependencies

Service container built at startup, and dependency injection for FastAPI
routes.
"""

from datetime import timedelta
from pathlib import Path
from typing import Annotated, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config import Settings, get_settings
from casegate.conversation.threads import ConversationSessionManager, ThreadStore
from casegate.errors import Unauthorized
from casegate.integrations.base import CaseAuthority, GenerationEngine
from casegate.integrations.federated import FederatedTokenVerifier
from casegate.models.cases import CaseNamespace
from casegate.models.users import SessionClaims
from casegate.retrieval.resolver import DocumentResolver
from casegate.scheduler import BackgroundJobs
from casegate.security.audit import AuditLog, AuditLogger
from casegate.security.directory import AdminPolicy, EntitlementDirectory
from casegate.security.enforcement import EnforcementPipeline
from casegate.security.sessions import SessionIssuer
from casegate.security.synchronizer import DirectorySynchronizer
from casegate.storage.base import ObjectStore, RetrievalIndex

# Security scheme
security = HTTPBearer(auto_error=False)


class ServiceContainer:
    """
    Every long-lived component of the application.

    One container per application instance; tests build their own with
    in-memory collaborators.
    """

    def __init__(
        self,
        settings: Settings,
        authority: CaseAuthority,
        store: ObjectStore,
        engine: GenerationEngine,
        index: Optional[RetrievalIndex] = None,
        verifier: Optional[FederatedTokenVerifier] = None,
        directory: Optional[EntitlementDirectory] = None,
        audit: Optional[AuditLogger] = None,
        thread_store: Optional[ThreadStore] = None,
    ):
        self.settings = settings
        self.authority = authority
        self.store = store
        self.engine = engine
        self.index = index

        self.namespace = CaseNamespace(settings.case_id_pattern)
        self.admin_policy = AdminPolicy(settings.admin_roles, settings.admin_emails)
        self.audit = audit or AuditLogger(
            AuditLog(storage_path=Path(settings.audit_log_path) if settings.audit_log_path else None)
        )
        self.directory = directory or EntitlementDirectory()

        self.synchronizer = DirectorySynchronizer(
            directory=self.directory,
            authority=authority,
            store=store,
            namespace=self.namespace,
            admin_policy=self.admin_policy,
            audit=self.audit,
            username=settings.authority_username,
            password=settings.authority_password,
            request_delay=settings.sync_request_delay_seconds,
        )
        self.sessions = SessionIssuer(
            directory=self.directory,
            authority=authority,
            verifier=verifier,
            admin_policy=self.admin_policy,
            audit=self.audit,
            secret=settings.jwt_secret_key,
            algorithm=settings.jwt_algorithm,
            expire_minutes=settings.session_expire_minutes,
        )
        self.threads = ConversationSessionManager(
            engine=engine,
            store=thread_store,
            audit=self.audit,
            idle_minutes=settings.thread_idle_minutes,
        )
        self.resolver = DocumentResolver(
            store=store,
            index=index,
            namespace=self.namespace,
            audit=self.audit,
            signed_url_ttl=timedelta(minutes=settings.signed_url_ttl_minutes),
            top_k=settings.search_top_k,
        )
        self.pipeline = EnforcementPipeline(
            engine=engine,
            resolver=self.resolver,
            namespace=self.namespace,
            audit=self.audit,
        )
        self.jobs = BackgroundJobs(self.synchronizer, self.threads, sync_cron=settings.sync_cron)

    async def aclose(self) -> None:
        """Close collaborators holding network clients."""
        for component in (self.authority, self.index, self.engine):
            close = getattr(component, "aclose", None)
            if close is not None:
                await close()


def build_services(settings: Optional[Settings] = None) -> ServiceContainer:
    """Build the container with the production adapters."""
    from casegate.integrations.authority_client import CaseAuthorityClient
    from casegate.integrations.openai_engine import OpenAIGenerationEngine
    from casegate.storage.azure_blob import AzureBlobObjectStore
    from casegate.storage.azure_search import AzureSearchIndex

    settings = settings or get_settings()

    index = AzureSearchIndex() if settings.search_endpoint else None
    verifier = FederatedTokenVerifier() if settings.federated_jwks_url else None

    return ServiceContainer(
        settings=settings,
        authority=CaseAuthorityClient(),
        store=AzureBlobObjectStore(),
        engine=OpenAIGenerationEngine(),
        index=index,
        verifier=verifier,
    )


def get_services(request: Request) -> ServiceContainer:
    """Get the application's service container."""
    return request.app.state.services


Services = Annotated[ServiceContainer, Depends(get_services)]


async def get_current_session(
    services: Services,
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> SessionClaims:
    """
    Decode the bearer session token.

    The entitlement in the returned claims is the snapshot frozen at login.
    """
    if not credentials or not credentials.credentials:
        raise Unauthorized("Not authenticated")
    return services.sessions.decode(credentials.credentials)


CurrentSession = Annotated[SessionClaims, Depends(get_current_session)]

