import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from meetlines.hooks.base import Hook, Toaster
from meetlines.models import Profile, User
from meetlines.services.storage import ObjectStorage, StorageError, get_storage

logger = logging.getLogger(__name__)

AVATAR_BUCKET = "user-uploads"

# Columns a user may change on their own profile
EDITABLE_FIELDS = {
    "username", "display_name", "bio", "location", "age", "avatar_url", "phone",
    "website", "notes", "notes_visible", "find_friends_visible", "instagram_url",
    "twitter_url", "linkedin_url", "facebook_url", "tiktok_url", "youtube_url",
    "interest", "relationship_status",
}


def _profile_dict(profile: Profile) -> dict:
    return {c.key: getattr(profile, c.key) for c in Profile.__table__.columns}


class ProfileHook(Hook):
    """The signed-in user's own profile."""

    def __init__(
        self,
        db: Session,
        user: Optional[User],
        toaster: Optional[Toaster] = None,
        storage: Optional[ObjectStorage] = None,
    ):
        super().__init__(db, user, toaster)
        self.profile: Optional[dict] = None
        self.saving = False
        self.loading = True
        self.storage = storage or get_storage()

    def load(self):
        if not self.user:
            return
        self.loading = True
        try:
            row = self.db.query(Profile).filter(Profile.user_id == self.user.id).first()
            self.profile = _profile_dict(row) if row else None
        except SQLAlchemyError as e:
            self._fail("Error fetching profile", "Erro ao carregar perfil", e)
        finally:
            self.loading = False

    refetch = load

    def update(self, **updates) -> bool:
        if not self.user or self.profile is None:
            return False

        unknown = set(updates) - EDITABLE_FIELDS
        if unknown:
            logger.error("Refusing to update profile fields: %s", ", ".join(sorted(unknown)))
            self.toaster.error("Erro ao salvar perfil")
            return False

        self.saving = True
        try:
            row = self.db.query(Profile).filter(Profile.user_id == self.user.id).first()
            if row is None:
                self.toaster.error("Erro ao salvar perfil")
                return False
            for field, value in updates.items():
                setattr(row, field, value)
            self.db.commit()
            self.db.refresh(row)
            self.profile = _profile_dict(row)
            self.toaster.success("Perfil salvo com sucesso!")
            return True
        except SQLAlchemyError as e:
            self._fail("Error updating profile", "Erro ao salvar perfil", e)
            return False
        finally:
            self.saving = False

    def upload_avatar(self, filename: str, data: bytes) -> Optional[str]:
        """Upload a new avatar and point the profile at it. Returns the public URL."""
        if not self.user:
            return None

        ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else "jpg"
        path = f"{self.user.id}/avatar.{ext}"

        self.saving = True
        try:
            self.storage.upload(AVATAR_BUCKET, path, data, upsert=True)
        except (StorageError, OSError) as e:
            logger.error("Error uploading file: %s", e)
            self.toaster.error("Erro ao fazer upload da foto")
            self.saving = False
            return None

        public_url = self.storage.get_public_url(AVATAR_BUCKET, path)
        if self.update(avatar_url=public_url):
            self.toaster.success("Foto de perfil atualizada!")
            return public_url
        return None
