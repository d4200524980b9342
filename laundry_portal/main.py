"""
Laundry Portal - Main Application Entry Point

Customer booking, admin dashboards, support desk and center-admin console
for a laundry pickup and delivery service.
"""

import logging
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit

from fastapi import FastAPI, Request, Depends
from fastapi.staticfiles import StaticFiles
from fastapi.responses import HTMLResponse, JSONResponse

from laundry_portal.api_client import BackendClient, anonymous_backend
from laundry_portal.config import settings, STATIC_DIR
from laundry_portal.csrf import CSRFMiddleware
from laundry_portal.database import init_db, close_db, async_session
from laundry_portal.drafts import purge_stale_drafts
from laundry_portal.errors import ActionInProgress, ApiError
from laundry_portal.rate_limit import RateLimitMiddleware
from laundry_portal.routes.auth_routes import router as auth_router
from laundry_portal.routes.booking_routes import router as booking_router
from laundry_portal.routes.customer_routes import router as customer_router
from laundry_portal.routes.admin_routes import router as admin_router
from laundry_portal.routes.support_routes import router as support_router
from laundry_portal.routes.center_admin_routes import router as center_admin_router
from laundry_portal.schemas import Branch, Service
from laundry_portal.templating import render, redirect_to, safe_next

logger = logging.getLogger(__name__)

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    description=settings.APP_DESCRIPTION,
    version=settings.APP_VERSION,
)

# Mount static files (CSS, images)
app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")

# Add CSRF protection middleware
app.add_middleware(CSRFMiddleware)

# Add rate limiting middleware
app.add_middleware(RateLimitMiddleware)

# Include routers
app.include_router(auth_router)
app.include_router(booking_router)
app.include_router(customer_router)
app.include_router(admin_router)
app.include_router(support_router)
app.include_router(center_admin_router)


def referring_page(request: Request) -> Optional[str]:
    """Local path and query of the Referer, without a previous notice or error."""
    referer = request.headers.get("referer")
    if not referer:
        return None
    parts = urlsplit(referer)
    if parts.netloc and parts.netloc != request.url.netloc:
        return None
    query = [(k, v) for k, v in parse_qsl(parts.query) if k not in ("notice", "error")]
    return f"{parts.path}?{urlencode(query)}" if query else parts.path


@app.exception_handler(ActionInProgress)
async def action_in_progress_handler(request: Request, exc: ActionInProgress):
    """A second submit of the same action while the first is still running."""
    logger.info("Rejected duplicate submission %s", exc.key)
    if "text/html" in request.headers.get("accept", ""):
        # Form posts go back to the page they came from
        return redirect_to(safe_next(referring_page(request), "/"), error=exc.message)
    return JSONResponse(status_code=409, content={"detail": exc.message})


# =============================================================================
# PAGES
# =============================================================================

@app.get("/", response_class=HTMLResponse)
async def home(request: Request):
    """Landing page."""
    return render(request, "index.html")


@app.get("/services", response_class=HTMLResponse)
async def services_page(request: Request, backend: BackendClient = Depends(anonymous_backend)):
    """Branches and the services each one offers."""
    catalogue, load_error = [], None
    try:
        for raw in await backend.get_branches():
            branch = Branch.model_validate(raw)
            services = [Service.model_validate(s) for s in await backend.get_branch_services(branch.id)]
            catalogue.append({"branch": branch, "services": services})
    except ApiError as e:
        logger.warning("Could not load the services catalogue: %s", e)
        load_error = e.message
    return render(request, "services.html", {"catalogue": catalogue, "load_error": load_error})


@app.get("/help", response_class=HTMLResponse)
async def help_page(request: Request):
    return render(request, "help.html")


@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring."""
    return {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
    }


# =============================================================================
# STARTUP & SHUTDOWN
# =============================================================================

@app.on_event("startup")
async def startup_event():
    """Run on application startup."""
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Initialize the draft store and drop abandoned wizards
    await init_db()
    async with async_session() as db:
        await purge_stale_drafts(db)

    print(f"""
    ==============================================================
    {settings.APP_NAME} portal is starting...

    Version: {settings.APP_VERSION}
    Backend: {settings.api_base_url}
    URL: http://{settings.HOST}:{settings.PORT}
    ==============================================================
    """)


@app.on_event("shutdown")
async def shutdown_event():
    """Run on application shutdown."""
    await close_db()
    print(f"\n{settings.APP_NAME} portal is shutting down...\n")


# =============================================================================
# RUN (for development)
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "laundry_portal.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
    )
