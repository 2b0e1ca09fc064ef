from sqlalchemy.orm import Session

from models.profile import Profile


def get_or_create_profile(db: Session, user_id: int) -> Profile:
    """Profiles are keyed by the authenticated user id; create on first sight."""
    profile = db.query(Profile).filter_by(id=user_id).first()
    if profile is None:
        profile = Profile(id=user_id)
        db.add(profile)
        db.commit()
        db.refresh(profile)
    return profile
