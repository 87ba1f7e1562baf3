"""Read side of templates and generated posts."""
import logging
from typing import List, Optional

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from autyvia.database.db_schema import GeneratedPost, Template

logger = logging.getLogger(__name__)

PLATFORMS = {
    "instagram": "Instagram",
    "facebook": "Facebook",
    "linkedin": "LinkedIn",
    "tiktok": "TikTok",
}

FORMATS = {
    "post": "Post",
    "story": "Story",
    "carousel": "Carousel",
    "reel": "Reel",
}

RECENT_POSTS_LIMIT = 5


async def list_templates(db: AsyncSession, platform: str, format: str) -> List[Template]:
    """Templates tagged with both the platform and the format.

    Tags are JSON lists, so containment is checked here rather than in SQL.
    """
    result = await db.exec(select(Template).order_by(Template.name))
    return [
        t for t in result.all()
        if platform in (t.platforms or []) and format in (t.formats or [])
    ]


async def get_template(db: AsyncSession, template_id: str) -> Optional[Template]:
    return await db.get(Template, template_id)


async def recent_posts(db: AsyncSession, company_id: str, limit: int = RECENT_POSTS_LIMIT) -> List[GeneratedPost]:
    result = await db.exec(
        select(GeneratedPost)
        .where(GeneratedPost.company_id == company_id)
        .order_by(GeneratedPost.created_at.desc())
        .limit(limit)
    )
    return list(result.all())


DEFAULT_TEMPLATES = [
    {
        "name": "Promotion du mois",
        "category": "promotion",
        "base_prompt": "Announce a limited-time offer on one of the company's services.",
        "sectors": ["spa-beaute", "coiffure", "esthetique", "bien-etre", "fitness", "autre"],
        "platforms": ["instagram", "facebook"],
        "formats": ["post", "story"],
    },
    {
        "name": "Conseil d'expert",
        "category": "education",
        "base_prompt": "Share a practical tip related to the company's expertise.",
        "sectors": ["spa-beaute", "esthetique", "bien-etre", "fitness"],
        "platforms": ["instagram", "facebook", "linkedin"],
        "formats": ["post", "carousel"],
    },
    {
        "name": "Avant / Après",
        "category": "showcase",
        "base_prompt": "Show a before/after result obtained for a client.",
        "sectors": ["coiffure", "esthetique", "fitness"],
        "platforms": ["instagram", "tiktok"],
        "formats": ["post", "reel", "story"],
    },
    {
        "name": "Coulisses",
        "category": "brand",
        "base_prompt": "Take the audience behind the scenes of a normal working day.",
        "sectors": ["spa-beaute", "coiffure", "bien-etre", "autre"],
        "platforms": ["instagram", "tiktok", "facebook"],
        "formats": ["story", "reel"],
    },
]


async def seed_templates(db: AsyncSession) -> int:
    """Insert the default catalogue when the template table is empty."""
    existing = await db.exec(select(Template).limit(1))
    if existing.first() is not None:
        return 0
    for data in DEFAULT_TEMPLATES:
        db.add(Template(**data))
    await db.commit()
    logger.info("Seeded %d default templates", len(DEFAULT_TEMPLATES))
    return len(DEFAULT_TEMPLATES)
