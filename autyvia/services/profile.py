"""Company profile form: option lists, validation and the full-replace save."""
import re
import logging
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from autyvia.database.db_schema import Company, utcnow
from autyvia.services.errors import ProfileError
from autyvia.services.session_context import SessionContext

logger = logging.getLogger(__name__)

BUSINESS_SECTORS = {
    "spa-beaute": "Spa & Beauté",
    "coiffure": "Coiffure",
    "esthetique": "Esthétique médicale",
    "bien-etre": "Bien-être",
    "fitness": "Fitness",
    "autre": "Autre",
}

TONES_OF_VOICE = {
    "professionnel-chaleureux": "Professionnel & Chaleureux",
    "luxe-elegant": "Luxe & Élégant",
    "decontracte-amical": "Décontracté & Amical",
    "expert-technique": "Expert & Technique",
    "inspirant-motivant": "Inspirant & Motivant",
}

VISUAL_STYLES = {
    "minimaliste": "Minimaliste & Épuré",
    "luxueux": "Luxueux & Sophistiqué",
    "naturel": "Naturel & Organique",
    "moderne": "Moderne & Dynamique",
    "chaleureux": "Chaleureux & Cocooning",
}

DEFAULT_BRAND_COLORS = ["#000000", "#ffffff"]
HEX_COLOR = re.compile(r"^#[0-9a-fA-F]{6}$")


def add_service(services: List[str], new_service: str) -> List[str]:
    name = (new_service or "").strip()
    if not name or name in services:
        return list(services)
    return [*services, name]


def remove_service(services: List[str], name: str) -> List[str]:
    return [s for s in services if s != name]


class CompanyProfileForm(BaseModel):
    name: str = Field(min_length=1)
    business_sector: str = Field(min_length=1)
    services: List[str] = Field(default_factory=list)
    target_audience: str = ""
    brand_colors: List[str] = Field(default_factory=lambda: list(DEFAULT_BRAND_COLORS))
    logo_url: Optional[str] = None
    tone_of_voice: str = ""
    visual_style: str = ""

    @field_validator("name", "business_sector", "target_audience", "tone_of_voice", "visual_style", mode="before")
    @classmethod
    def _strip(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("services")
    @classmethod
    def _dedupe_services(cls, value: List[str]) -> List[str]:
        services: List[str] = []
        for service in value:
            services = add_service(services, service)
        return services

    @field_validator("brand_colors")
    @classmethod
    def _two_hex_colors(cls, value: List[str]) -> List[str]:
        colors = [c for c in value if c][:2]
        colors += DEFAULT_BRAND_COLORS[len(colors):]
        for color in colors:
            if not HEX_COLOR.match(color):
                raise ValueError(f"'{color}' is not a #rrggbb colour")
        return [c.lower() for c in colors]

    @field_validator("logo_url", mode="before")
    @classmethod
    def _empty_logo_is_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value.strip() if isinstance(value, str) else value

    @classmethod
    def from_company(cls, company: Company) -> "CompanyProfileForm":
        """Pre-fill from the stored row, tolerating the empty profile of a new sign-up."""
        return cls.model_construct(
            name=company.name or "",
            business_sector=company.business_sector or "",
            services=list(company.services or []),
            target_audience=company.target_audience or "",
            brand_colors=list(company.brand_colors or DEFAULT_BRAND_COLORS),
            logo_url=company.logo_url,
            tone_of_voice=company.tone_of_voice or "",
            visual_style=company.visual_style or "",
        )


async def save_company_profile(context: SessionContext, form: CompanyProfileForm) -> Company:
    """Replace every mutable company field at once, then reload the session.

    The row is written with an UPDATE statement; the context's own copy only
    changes through its load chain.
    """
    company = context.company
    if company is None or not company.id:
        raise ProfileError("Company not found")

    company_id = company.id
    db = context.db
    try:
        await db.execute(
            update(Company)
            .where(Company.id == company_id)
            .values(
                name=form.name,
                business_sector=form.business_sector,
                services=list(form.services),
                target_audience=form.target_audience,
                brand_colors=list(form.brand_colors),
                logo_url=form.logo_url,
                tone_of_voice=form.tone_of_voice,
                visual_style=form.visual_style,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await db.commit()
    except SQLAlchemyError as exc:
        logger.error("Company update failed for %s: %s", company_id, exc)
        await db.rollback()
        await context.refresh()
        raise ProfileError("Profile update failed") from exc

    await context.refresh()
    return context.company
