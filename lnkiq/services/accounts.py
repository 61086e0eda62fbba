from __future__ import annotations

from lnkiq.extensions import db
from lnkiq.models import (
    AnonymousDevice,
    Bookmark,
    OAuthAccount,
    PageVisit,
    User,
    UserSession,
)
from lnkiq.services.security import issue_session


class AccountNotFound(Exception):
    pass


def sign_in_oauth_user(
    provider: str, provider_account_id: str, profile: dict
) -> tuple[User, str]:
    """Find or create the user behind a completed OAuth handshake.

    ``profile`` carries ``name``, ``email`` and ``image`` as returned by the
    provider. Returns the user and a fresh bearer session token.
    """
    account = OAuthAccount.query.filter_by(
        provider=provider, provider_account_id=provider_account_id
    ).first()
    if account:
        user = account.user
    else:
        email = (profile.get("email") or "").strip().lower() or None
        user = User.query.filter_by(email=email).first() if email else None
        if not user:
            user = User(
                name=profile.get("name"),
                email=email,
                image=profile.get("image"),
            )
            db.session.add(user)
            db.session.flush()
        account = OAuthAccount(
            user_id=user.id,
            provider=provider,
            provider_account_id=provider_account_id,
            access_token=profile.get("access_token"),
            refresh_token=profile.get("refresh_token"),
        )
        db.session.add(account)

    if profile.get("name") and not user.name:
        user.name = profile["name"]
    if profile.get("image"):
        user.image = profile["image"]
    db.session.commit()
    return user, issue_session(user)


def delete_account(user_id: int) -> None:
    user = db.session.get(User, user_id)
    if not user:
        raise AccountNotFound("User not found")

    try:
        # Devices outlive their user and fall back to anonymous mode.
        AnonymousDevice.query.filter_by(user_id=user_id).update(
            {"user_id": None}, synchronize_session=False
        )
        Bookmark.query.filter_by(user_id=user_id).delete(synchronize_session=False)
        PageVisit.query.filter_by(user_id=user_id).delete(synchronize_session=False)
        UserSession.query.filter_by(user_id=user_id).delete(synchronize_session=False)
        OAuthAccount.query.filter_by(user_id=user_id).delete(synchronize_session=False)
        User.query.filter_by(id=user_id).delete(synchronize_session=False)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
