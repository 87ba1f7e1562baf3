from datetime import datetime, timedelta, timezone

import pytest

from autyvia.database.db_schema import GeneratedPost
from autyvia.services.catalog import DEFAULT_TEMPLATES, list_templates, recent_posts, seed_templates

from conftest import make_template

pytestmark = pytest.mark.anyio


async def test_templates_need_both_platform_and_format(db):
    await make_template(db, "Story promo", ["instagram", "facebook"], ["story", "post"])
    await make_template(db, "Feed only", ["instagram"], ["post"])
    await make_template(db, "Facebook story", ["facebook"], ["story"])

    names = [t.name for t in await list_templates(db, "instagram", "story")]
    assert names == ["Story promo"]


async def test_recent_posts_newest_first_and_limited(db):
    start = datetime(2026, 1, 1, tzinfo=timezone.utc)
    for i in range(7):
        db.add(GeneratedPost(
            company_id="company-1",
            platform="instagram",
            format="post",
            image_url=f"https://cdn.test/{i}.png",
            caption_text=f"post {i}",
            created_at=start + timedelta(days=i),
        ))
    db.add(GeneratedPost(company_id="company-2", platform="instagram", format="post", image_url="x"))
    await db.commit()

    posts = await recent_posts(db, "company-1")
    assert [p.caption_text for p in posts] == ["post 6", "post 5", "post 4", "post 3", "post 2"]


async def test_seed_templates_only_fills_an_empty_table(db):
    assert await seed_templates(db) == len(DEFAULT_TEMPLATES)
    assert await seed_templates(db) == 0
    assert await list_templates(db, "instagram", "story")
