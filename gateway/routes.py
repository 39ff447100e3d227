"""
Tableau Relay - REST API Routes
=================================
All HTTP API endpoints exposed to the browser client.

Route groups:
    /api/auth/*                 - Sign in / sign out against Tableau
    /api/projects               - Nested project tree for a filter
    /api/views                  - Views plus their preview images
    /api/views/{view_id}/export - One view's data as an .xlsx download
    /api/health                 - Liveness probe

All routes except /api/auth/signin and /api/health require the Tableau
REST token as a bearer token plus the site id. See auth.py.

Relay errors are translated to HTTPException with a detail of the form
{"error": <kind>, "message": <text>} so the caller can tell a missing
credential from an upstream failure from a malformed upstream response.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel, Field

from gateway.auth import AuthManager, require_credential
from relay.client import TableauClient
from relay.errors import RelayError, RemoteUnavailable
from relay.export import XLSX_MEDIA_TYPE, csv_to_workbook, export_filename
from relay.models import Credential
from relay.previews import PreviewCollector
from relay.tree import TreeAggregator

logger = logging.getLogger(__name__)


# =============================================================================
# Request Models (Pydantic)
# =============================================================================

class SiteRef(BaseModel):
    """Target Tableau site."""
    content_url: str | None = Field(None, alias="contentUrl")

class SignInCredentials(BaseModel):
    """Either name/password or a personal access token pair."""
    name: str | None = Field(None, description="Tableau user name")
    password: str | None = Field(None, description="Tableau password")
    pat_name: str | None = Field(None, alias="personalAccessTokenName")
    pat_secret: str | None = Field(None, alias="personalAccessTokenSecret")
    site: SiteRef | None = None

class SignInRequest(BaseModel):
    """Body of POST /api/auth/signin, shaped like Tableau's own tsRequest."""
    credentials: SignInCredentials


# =============================================================================
# Router Factory
# =============================================================================

def create_router(
    client: TableauClient,
    aggregator: TreeAggregator,
    collector: PreviewCollector,
    auth_manager: AuthManager,
    config: dict,
) -> APIRouter:
    """
    Create and configure the API router with all endpoints.

    Args:
        client:       Remote API client (sign-in, export data).
        aggregator:   Builds nested project trees.
        collector:    Collects view preview images.
        auth_manager: Signs connected-app embed tokens.
        config:       Loaded configuration (see config.py DEFAULTS).

    Returns:
        Configured APIRouter with all endpoints registered.
    """
    router = APIRouter(prefix="/api")
    default_site = config["tableau"].get("site_content_url", "")
    default_project = config["tableau"].get("default_project", "")

    credential_dep = require_credential()

    async def target_filter(
        value: str | None = Query(None, alias="filter", description="Project name to scope the listing to"),
    ) -> str | None:
        """Root filter from the query, falling back to the configured project."""
        if value is None:
            value = default_project
        return value.strip() or None

    # =========================================================================
    # AUTH ROUTES
    # =========================================================================

    @router.post("/auth/signin")
    async def signin(req: SignInRequest):
        """
        Sign in to Tableau and issue an embed token.
        Returns the REST token and site id for later relay calls.
        """
        creds = req.credentials
        site_url = default_site
        if creds.site is not None and creds.site.content_url is not None:
            site_url = creds.site.content_url

        try:
            session = await client.sign_in(
                site_url,
                name=creds.name,
                password=creds.password,
                pat_name=creds.pat_name,
                pat_secret=creds.pat_secret,
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except RemoteUnavailable as e:
            logger.error("[AUTH] Tableau sign-in failed: %s", e)
            if e.upstream_status == 401:
                raise HTTPException(
                    status_code=401,
                    detail={"error": e.kind, "message": "Tableau authentication failed"},
                )
            raise HTTPException(status_code=e.status_code, detail=e.to_dict())

        try:
            jwt_token = auth_manager.create_embed_token(creds.name)
        except (RuntimeError, ValueError) as e:
            logger.error("[AUTH] Failed to generate embed token: %s", e)
            raise HTTPException(status_code=500, detail="Failed to generate JWT token")

        logger.info("[AUTH] Signed in to site %s", session["siteId"])
        return {**session, "jwtToken": jwt_token}

    @router.post("/auth/signout")
    async def signout(credential: Credential = Depends(credential_dep)):
        """Invalidate the Tableau REST token."""
        try:
            await client.sign_out(credential)
        except RelayError as e:
            _raise_http(e)
        return {"message": "Signed out"}

    # =========================================================================
    # CORE ROUTES - Require a credential
    # =========================================================================

    @router.get("/projects")
    async def get_projects(
        credential: Credential = Depends(credential_dep),
        root_filter: str | None = Depends(target_filter),
    ):
        """
        Nested project tree for the filter.
        Returns {"rawData": <top-level payload>, "nestedProjects": [...]}.
        """
        try:
            return await aggregator.build(credential, root_filter)
        except RelayError as e:
            _raise_http(e)

    @router.get("/views")
    async def get_views(
        credential: Credential = Depends(credential_dep),
        root_filter: str | None = Depends(target_filter),
    ):
        """
        Views for the filter plus one preview image per view.
        A failed preview shows up as previewImage null, never as an error.
        """
        try:
            return await collector.run(credential, root_filter)
        except RelayError as e:
            _raise_http(e)

    @router.get("/views/{view_id}/export")
    async def export_view(
        view_id: str,
        name: str | None = Query(None, description="Download / worksheet name"),
        credential: Credential = Depends(credential_dep),
    ):
        """Download the view's summary data as an .xlsx workbook."""
        try:
            csv_text = await client.fetch_view_data(credential, view_id)
        except RelayError as e:
            _raise_http(e)

        label = name or view_id
        content = csv_to_workbook(csv_text, label)
        logger.info("[EXPORT] View %s exported (%d bytes)", view_id, len(content))
        return Response(
            content=content,
            media_type=XLSX_MEDIA_TYPE,
            headers={"Content-Disposition": f'attachment; filename="{export_filename(label)}"'},
        )

    # =========================================================================
    # HEALTH
    # =========================================================================

    @router.get("/health")
    async def health():
        return {"status": "ok"}

    return router


def _raise_http(error: RelayError) -> None:
    """Log a fatal relay error and re-raise it as an HTTPException."""
    logger.error("[API] %s: %s", error.kind, error)
    raise HTTPException(status_code=error.status_code, detail=error.to_dict()) from error
