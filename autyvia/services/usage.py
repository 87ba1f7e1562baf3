"""Monthly post quota: dashboard figures and the generation protocol around it."""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from autyvia.database.db_schema import Company, GeneratedPost, Pack, Template
from autyvia.services.errors import GenerationError, QuotaExceededError
from autyvia.services.session_context import SessionContext
from autyvia.services.webhook import GenerationResult, GenerationWebhook

logger = logging.getLogger(__name__)

# shown on the dashboard when the company has no active pack
DEFAULT_POSTS_LIMIT = 30
DEFAULT_PACK_LABEL = "Essential"


def check_quota(pack: Optional[Pack]) -> None:
    """Reject locally when the cached pack is used up. No pack means no limit to check."""
    if pack is not None and pack.posts_used >= pack.monthly_posts_limit:
        raise QuotaExceededError()


@dataclass(frozen=True)
class UsageSummary:
    used: int
    limit: int
    remaining: int
    percentage: float
    pack_label: str
    pack_active: bool

    @classmethod
    def from_pack(cls, pack: Optional[Pack]) -> "UsageSummary":
        used = pack.posts_used if pack else 0
        limit = pack.monthly_posts_limit if pack else DEFAULT_POSTS_LIMIT
        if limit > 0:
            percentage = min(used / limit * 100, 100.0)
        else:
            percentage = 100.0
        return cls(
            used=used,
            limit=limit,
            remaining=max(limit - used, 0),
            percentage=percentage,
            pack_label=(pack.pack_type if pack and pack.pack_type else DEFAULT_PACK_LABEL),
            pack_active=bool(pack and pack.status == "active"),
        )

    @property
    def limit_reached(self) -> bool:
        return self.used >= self.limit

    @property
    def level(self) -> str:
        if self.percentage > 80:
            return "high"
        if self.percentage > 50:
            return "medium"
        return "low"


@dataclass
class PostRequest:
    platform: str
    format: str
    template: Template
    suggestion: str = ""


def build_webhook_payload(company: Company, request: PostRequest) -> Dict[str, Any]:
    template = request.template
    return {
        "company_id": company.id,
        "company_name": company.name,
        "business_sector": company.business_sector,
        "services": list(company.services or []),
        "target_audience": company.target_audience,
        "brand_colors": list(company.brand_colors or []),
        "logo_url": company.logo_url,
        "tone_of_voice": company.tone_of_voice,
        "visual_style": company.visual_style,
        "platform": request.platform,
        "format": request.format,
        "template_id": template.id,
        "template_name": template.name,
        "template_category": template.category,
        "base_prompt": template.base_prompt,
        "suggestion": request.suggestion,
    }


class PostGenerator:
    """
    Runs one generation for the signed-in company:

    1. quota check against the cached pack, before any network call
    2. a single webhook call
    3. insert the GeneratedPost and, when there is a pack, bump `posts_used`
       with a conditional UPDATE, both in one transaction
    4. refresh the session so the pack snapshot shows the new counter

    The UPDATE only matches while `posts_used < monthly_posts_limit`; losing
    that race to another session rolls back the insert and raises
    QuotaExceededError.
    """

    def __init__(self, context: SessionContext, webhook: GenerationWebhook):
        self.context = context
        self.webhook = webhook

    async def generate(self, request: PostRequest) -> GeneratedPost:
        company = self.context.company
        if company is None:
            raise GenerationError("No company loaded")
        pack = self.context.pack
        check_quota(pack)

        try:
            result = await self.webhook.generate(build_webhook_payload(company, request))
        except GenerationError:
            logger.exception("Generation webhook failed for company %s", company.id)
            raise

        try:
            post = await self._persist(company, pack, request, result)
        finally:
            await self.context.refresh()
        return post

    async def _persist(
        self,
        company: Company,
        pack: Optional[Pack],
        request: PostRequest,
        result: GenerationResult,
    ) -> GeneratedPost:
        db = self.context.db
        company_id = company.id
        pack_id = pack.id if pack is not None else None
        post = GeneratedPost(
            company_id=company_id,
            platform=request.platform,
            format=request.format,
            template_id=request.template.id,
            suggestion=request.suggestion,
            image_url=result.image_url,
            caption_text=result.caption,
            hashtags=result.hashtags,
        )
        try:
            db.add(post)
            if pack_id is not None:
                # sqlmodel's exec() only covers selects
                outcome = await db.execute(
                    update(Pack)
                    .where(Pack.id == pack_id, Pack.posts_used < Pack.monthly_posts_limit)
                    .values(posts_used=Pack.posts_used + 1)
                )
                if outcome.rowcount != 1:
                    await db.rollback()
                    logger.warning("Pack %s reached its limit during generation", pack_id)
                    raise QuotaExceededError()
            await db.commit()
        except SQLAlchemyError as exc:
            logger.exception("Could not save generated post for company %s", company_id)
            await db.rollback()
            raise GenerationError() from exc

        logger.info("Generated post %s for company %s", post.id, company_id)
        return post
