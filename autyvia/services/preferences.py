"""Remember-me preference, kept in long-lived browser cookies."""
from typing import Optional

from fastapi import Request, Response

REMEMBER_ME_COOKIE = "remember_me"
REMEMBERED_EMAIL_COOKIE = "remembered_email"
REMEMBER_ME_MAX_AGE = 365 * 24 * 3600


def read_remembered_email(request: Request) -> Optional[str]:
    if request.cookies.get(REMEMBER_ME_COOKIE) != "true":
        return None
    return request.cookies.get(REMEMBERED_EMAIL_COOKIE) or None


def remember_login(response: Response, email: str, remember: bool) -> Response:
    """Store the email when the box is ticked, forget it otherwise.

    Signing out leaves these cookies alone.
    """
    if remember:
        response.set_cookie(REMEMBER_ME_COOKIE, "true", max_age=REMEMBER_ME_MAX_AGE, samesite="Lax")
        response.set_cookie(REMEMBERED_EMAIL_COOKIE, email, max_age=REMEMBER_ME_MAX_AGE, samesite="Lax")
    else:
        response.delete_cookie(REMEMBER_ME_COOKIE)
        response.delete_cookie(REMEMBERED_EMAIL_COOKIE)
    return response
