from typing import Optional

import httpx
from pydantic import ValidationError

from shared.utils import settings, UnauthenticatedException, UnexpectedException

from blossomhub.models import ExternalIdentity


def _primary_email(emails: list) -> Optional[str]:
    verified = [e for e in emails if e.get("verified")]
    for entry in verified:
        if entry.get("primary"):
            return entry["email"]
    return verified[0]["email"] if verified else None


async def fetch_github_identity(
    access_token: str,
    request_id: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ExternalIdentity:
    """Resolve a GitHub OAuth access token into the identity it belongs to."""
    headers = {
        "Authorization": f"Bearer {access_token}",
        "Accept": "application/vnd.github+json",
    }
    if request_id:
        headers["X-Request-ID"] = request_id

    async with httpx.AsyncClient(
        base_url=settings.GITHUB_API_URL,
        timeout=settings.GITHUB_TIMEOUT_SECONDS,
        transport=transport,
    ) as client:
        try:
            response = await client.get("/user", headers=headers)
            response.raise_for_status()
            user = response.json()

            # The profile email is empty when the user keeps it private
            email = user.get("email")
            if not email:
                response = await client.get("/user/emails", headers=headers)
                response.raise_for_status()
                email = _primary_email(response.json())
            github_id = str(user["id"])
        except httpx.RequestError as exc:
            raise UnexpectedException("GitHub unavailable") from exc
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code in (401, 403):
                raise UnauthenticatedException("Invalid GitHub credentials") from exc
            raise UnexpectedException("GitHub request failed") from exc
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            # Not JSON, or not the shape GitHub documents
            raise UnexpectedException("Malformed GitHub response") from exc

    if not email:
        raise UnauthenticatedException("GitHub account has no verified email")

    try:
        return ExternalIdentity(
            github_id=github_id,
            email=email,
            display_name=user.get("name") or user.get("login"),
            profile_picture=user.get("avatar_url"),
        )
    except ValidationError as exc:
        raise UnexpectedException("Malformed GitHub response") from exc
