import pytest
from pydantic import ValidationError
from sqlalchemy.exc import OperationalError
from sqlmodel.ext.asyncio.session import AsyncSession

from autyvia.database.db import engine
from autyvia.database.db_schema import Company
from autyvia.services.authentication import AuthClient
from autyvia.services.errors import ProfileError
from autyvia.services.profile import CompanyProfileForm, add_service, remove_service, save_company_profile
from autyvia.services.session_context import SessionContext

from conftest import PASSWORD, make_account

pytestmark = pytest.mark.anyio


def test_add_service_trims_and_ignores_duplicates():
    services = add_service([], "  Massage ")
    services = add_service(services, "Facial")
    services = add_service(services, "Massage")
    services = add_service(services, "   ")
    assert services == ["Massage", "Facial"]
    assert remove_service(services, "Massage") == ["Facial"]


def test_form_normalises_fields():
    form = CompanyProfileForm(
        name=" Spa Zen ",
        business_sector="spa-beaute",
        services=["Massage", "Facial", "Massage"],
        brand_colors=["#AABBCC"],
        logo_url="  ",
    )
    assert form.name == "Spa Zen"
    assert form.services == ["Massage", "Facial"]
    assert form.brand_colors == ["#aabbcc", "#ffffff"]
    assert form.logo_url is None


def test_form_rejects_bad_colour_and_missing_name():
    with pytest.raises(ValidationError):
        CompanyProfileForm(name="Spa", business_sector="spa-beaute", brand_colors=["red", "#ffffff"])
    with pytest.raises(ValidationError):
        CompanyProfileForm(name="", business_sector="spa-beaute")


def test_form_prefills_from_new_company():
    form = CompanyProfileForm.from_company(Company(name="Fresh"))
    assert form.brand_colors == ["#000000", "#ffffff"]
    assert form.services == []


async def test_saved_services_come_back_in_order(db):
    await make_account(db)
    context = await SessionContext(AuthClient(db), db).start()
    await context.sign_in("owner@spa.fr", PASSWORD)

    form = CompanyProfileForm(
        name="Spa Zen",
        business_sector="spa-beaute",
        services=["Massage", "Facial"],
        target_audience="Women 30-50",
        brand_colors=["#112233", "#445566"],
        logo_url="https://cdn.test/logo.png",
        tone_of_voice="luxe-elegant",
        visual_style="naturel",
    )
    company = await save_company_profile(context, form)
    assert company.services == ["Massage", "Facial"]

    async with AsyncSession(engine) as fresh:
        stored = await fresh.get(Company, company.id)
    assert stored.services == ["Massage", "Facial"]
    assert stored.brand_colors == ["#112233", "#445566"]
    assert stored.tone_of_voice == "luxe-elegant"
    assert stored.logo_url == "https://cdn.test/logo.png"


async def test_save_without_company_fails(db):
    context = await SessionContext(AuthClient(db), db).start()
    with pytest.raises(ProfileError):
        await save_company_profile(context, CompanyProfileForm(name="X", business_sector="autre"))


async def test_failed_save_keeps_the_loaded_company(db, monkeypatch):
    await make_account(db)
    context = await SessionContext(AuthClient(db), db).start()
    await context.sign_in("owner@spa.fr", PASSWORD)

    async def broken_commit():
        raise OperationalError("COMMIT", {}, Exception("database is locked"))

    monkeypatch.setattr(db, "commit", broken_commit)

    with pytest.raises(ProfileError) as excinfo:
        await save_company_profile(context, CompanyProfileForm(name="Renamed", business_sector="autre"))
    assert isinstance(excinfo.value.__cause__, OperationalError)

    assert context.company.name == "Spa Zen"
    assert context.company.business_sector == ""

    async with AsyncSession(engine) as fresh:
        stored = await fresh.get(Company, context.company.id)
    assert stored.name == "Spa Zen"
