import os
import logging
from pathlib import Path
from typing import Annotated, Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Request, Form, HTTPException, status
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from autyvia.database.db import create_db_and_tables, session_scope, SessionDep
from autyvia.services.authentication import set_auth_cookie, clear_auth_cookie
from autyvia.services.catalog import (
    FORMATS,
    PLATFORMS,
    get_template,
    list_templates,
    recent_posts,
    seed_templates,
)
from autyvia.services.errors import (
    AuthError,
    GenerationError,
    ProfileError,
    ProvisioningError,
    QuotaExceededError,
)
from autyvia.services.preferences import read_remembered_email, remember_login
from autyvia.services.profile import (
    BUSINESS_SECTORS,
    TONES_OF_VOICE,
    VISUAL_STYLES,
    CompanyProfileForm,
    add_service,
    remove_service,
    save_company_profile,
)
from autyvia.services.session_context import ContextDep, SessionContext
from autyvia.services.usage import PostGenerator, PostRequest, UsageSummary
from autyvia.services.webhook import GenerationWebhook, get_generation_webhook

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
SEED_TEMPLATES = os.environ.get("SEED_TEMPLATES", "true").lower() in ("1", "true", "yes")

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

GENERIC_GENERATION_ERROR = "Post generation failed, please try again."
QUOTA_REACHED_ERROR = "You have reached your monthly post limit."


# --- Application Lifespan ---

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: Create tables before the app starts serving requests
    await create_db_and_tables()
    if SEED_TEMPLATES:
        async with session_scope() as session:
            await seed_templates(session)
    yield

app = FastAPI(title="Autyvia Posts Generator", lifespan=lifespan)

# --- Templates ---

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))


# --- Screen gating ---

class AccountNotReady(Exception):
    """Signed in, but the company has not been loaded (yet)."""


@app.exception_handler(AccountNotReady)
async def account_not_ready_handler(request: Request, exc: AccountNotReady):
    return templates.TemplateResponse(
        request=request,
        name="loading.html",
        context={"request": request},
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
    )


async def require_company(context: ContextDep) -> SessionContext:
    """Only a signed-in user with a loaded company reaches the authenticated screens."""
    if not context.is_authenticated:
        raise HTTPException(
            status_code=status.HTTP_303_SEE_OTHER,
            detail="Not authenticated",
            headers={"Location": "/login"},
        )
    if not context.is_ready:
        raise AccountNotReady()
    return context


ReadyContext = Annotated[SessionContext, Depends(require_company)]
WebhookDep = Annotated[GenerationWebhook, Depends(get_generation_webhook)]


# --- Routes ---

# 1. Home
@app.get("/")
async def home(context: ContextDep):
    target = "/dashboard" if context.is_authenticated else "/login"
    return RedirectResponse(url=target, status_code=status.HTTP_303_SEE_OTHER)


@app.get("/health")
async def health():
    return {"status": "ok"}


# 2. Login Page
@app.get("/login", response_class=HTMLResponse)
async def show_login(request: Request, context: ContextDep):
    """Renders the login form, pre-filled with the remembered email."""
    if context.is_ready:
        return RedirectResponse(url="/dashboard", status_code=status.HTTP_303_SEE_OTHER)

    remembered = read_remembered_email(request)
    return templates.TemplateResponse(
        request=request,
        name="login.html",
        context={"request": request, "error": None, "email": remembered or "", "remember_me": bool(remembered)}
    )


@app.post("/login")
async def handle_login(
    request: Request,
    context: ContextDep,
    email: Annotated[str, Form()],
    password: Annotated[str, Form()],
    remember_me: Annotated[bool, Form()] = False,
):
    """Signs in; user and company are loaded before the redirect is issued."""
    try:
        session = await context.sign_in(email, password)
    except AuthError as exc:
        return templates.TemplateResponse(
            request=request,
            name="login.html",
            context={"request": request, "error": exc.message, "email": email, "remember_me": remember_me},
            status_code=status.HTTP_401_UNAUTHORIZED,
        )

    response = RedirectResponse(url="/dashboard", status_code=status.HTTP_303_SEE_OTHER)
    set_auth_cookie(response, session)
    remember_login(response, email, remember_me)
    return response


# 3. Register Page
@app.get("/register", response_class=HTMLResponse)
async def show_register(request: Request):
    return templates.TemplateResponse(
        request=request,
        name="register.html",
        context={"request": request, "error": None, "form": {}}
    )


@app.post("/register")
async def handle_register(
    request: Request,
    context: ContextDep,
    first_name: Annotated[str, Form()],
    last_name: Annotated[str, Form()],
    company_name: Annotated[str, Form()],
    email: Annotated[str, Form()],
    password: Annotated[str, Form()],
):
    """Creates identity, company and user, then sends the new user to the profile form."""
    try:
        session = await context.sign_up(email, password, first_name, last_name, company_name)
    except (AuthError, ProfileError, ProvisioningError) as exc:
        form = {"first_name": first_name, "last_name": last_name, "company_name": company_name, "email": email}
        return templates.TemplateResponse(
            request=request,
            name="register.html",
            context={"request": request, "error": exc.message, "form": form},
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    response = RedirectResponse(url="/profile", status_code=status.HTTP_303_SEE_OTHER)
    set_auth_cookie(response, session)
    return response


# 4. Logout Route
@app.post("/logout")
async def handle_logout(context: ContextDep):
    """Signs out and clears the JWT cookie."""
    await context.sign_out()
    response = RedirectResponse(url="/login", status_code=status.HTTP_303_SEE_OTHER)
    clear_auth_cookie(response)
    return response


# 5. Dashboard
@app.get("/dashboard", response_class=HTMLResponse)
async def show_dashboard(request: Request, context: ReadyContext, session: SessionDep):
    try:
        posts = await recent_posts(session, context.company.id)
    except SQLAlchemyError as exc:
        logger.error("Could not load recent posts for %s: %s", context.company.id, exc)
        posts = []

    return templates.TemplateResponse(
        request=request,
        name="dashboard.html",
        context={
            "request": request,
            "user": context.user,
            "company": context.company,
            "usage": UsageSummary.from_pack(context.pack),
            "posts": posts,
            "platforms": PLATFORMS,
            "formats": FORMATS,
        }
    )


# 6. Company Profile
def _render_profile(request: Request, context: SessionContext, form, message: Optional[dict] = None, status_code: int = 200):
    return templates.TemplateResponse(
        request=request,
        name="profile.html",
        context={
            "request": request,
            "company": context.company,
            "form": form,
            "message": message,
            "sectors": BUSINESS_SECTORS,
            "tones": TONES_OF_VOICE,
            "styles": VISUAL_STYLES,
        },
        status_code=status_code,
    )


@app.get("/profile", response_class=HTMLResponse)
async def show_profile(request: Request, context: ReadyContext):
    """Renders the company profile form pre-filled from the loaded company."""
    return _render_profile(request, context, CompanyProfileForm.from_company(context.company))


@app.post("/profile", response_class=HTMLResponse)
async def handle_profile_submit(request: Request, context: ReadyContext):
    """
    One form, three actions: add a service, remove a service, or save.

    Adding and removing only change the form being edited; saving replaces
    every company field at once.
    """
    data = await request.form()
    services = [s for s in data.getlist("services") if isinstance(s, str)]
    fields = {
        "name": data.get("name", ""),
        "business_sector": data.get("business_sector", ""),
        "services": services,
        "target_audience": data.get("target_audience", ""),
        "brand_colors": [data.get("primary_color", ""), data.get("secondary_color", "")],
        "logo_url": data.get("logo_url", ""),
        "tone_of_voice": data.get("tone_of_voice", ""),
        "visual_style": data.get("visual_style", ""),
    }

    if "remove_service" in data:
        fields["services"] = remove_service(services, data.get("remove_service"))
        return _render_profile(request, context, CompanyProfileForm.model_construct(**fields))
    if "add_service" in data:
        fields["services"] = add_service(services, data.get("new_service", ""))
        return _render_profile(request, context, CompanyProfileForm.model_construct(**fields))

    try:
        form = CompanyProfileForm(**fields)
    except ValidationError as exc:
        problems = ", ".join(str(err["loc"][0]) for err in exc.errors())
        return _render_profile(
            request,
            context,
            CompanyProfileForm.model_construct(**fields),
            {"type": "error", "text": f"Please check: {problems}"},
            status.HTTP_400_BAD_REQUEST,
        )

    try:
        company = await save_company_profile(context, form)
    except ProfileError as exc:
        return _render_profile(request, context, form, {"type": "error", "text": exc.message}, status.HTTP_400_BAD_REQUEST)

    return _render_profile(
        request,
        context,
        CompanyProfileForm.from_company(company) if company else form,
        {"type": "success", "text": "Profile updated successfully!"},
    )


# 7. Post Generator wizard
async def _render_generator(
    request: Request,
    context: SessionContext,
    session,
    platform: Optional[str] = None,
    format: Optional[str] = None,
    template_id: Optional[str] = None,
    suggestion: str = "",
    error: Optional[str] = None,
    status_code: int = 200,
):
    step, available, template = 1, [], None
    if platform in PLATFORMS and format in FORMATS:
        step = 2
        available = await list_templates(session, platform, format)
        if template_id:
            template = next((t for t in available if t.id == template_id), None)
            if template is not None:
                step = 3

    return templates.TemplateResponse(
        request=request,
        name="generator.html",
        context={
            "request": request,
            "company": context.company,
            "step": step,
            "platform": platform,
            "format": format,
            "platforms": PLATFORMS,
            "formats": FORMATS,
            "templates": available,
            "template": template,
            "suggestion": suggestion,
            "usage": UsageSummary.from_pack(context.pack),
            "error": error,
        },
        status_code=status_code,
    )


@app.get("/generate", response_class=HTMLResponse)
async def show_generator(
    request: Request,
    context: ReadyContext,
    session: SessionDep,
    platform: Optional[str] = None,
    format: Optional[str] = None,
    template_id: Optional[str] = None,
):
    return await _render_generator(request, context, session, platform, format, template_id)


@app.post("/generate", response_class=HTMLResponse)
async def handle_generate(
    request: Request,
    context: ReadyContext,
    session: SessionDep,
    webhook: WebhookDep,
    platform: Annotated[str, Form()],
    format: Annotated[str, Form()],
    template_id: Annotated[str, Form()],
    suggestion: Annotated[str, Form()] = "",
):
    template = await get_template(session, template_id)
    if (
        template is None
        or platform not in (template.platforms or [])
        or format not in (template.formats or [])
    ):
        return await _render_generator(
            request, context, session, platform, format,
            error="Please choose a template for this platform and format.",
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    generator = PostGenerator(context, webhook)
    try:
        post = await generator.generate(PostRequest(platform, format, template, suggestion.strip()))
    except QuotaExceededError:
        return await _render_generator(
            request, context, session, platform, format, template_id, suggestion,
            error=QUOTA_REACHED_ERROR, status_code=status.HTTP_403_FORBIDDEN,
        )
    except GenerationError:
        return await _render_generator(
            request, context, session, platform, format, template_id, suggestion,
            error=GENERIC_GENERATION_ERROR, status_code=status.HTTP_502_BAD_GATEWAY,
        )

    return templates.TemplateResponse(
        request=request,
        name="generated_post.html",
        context={
            "request": request,
            "company": context.company,
            "post": post,
            "template": template,
            "usage": UsageSummary.from_pack(context.pack),
        }
    )
