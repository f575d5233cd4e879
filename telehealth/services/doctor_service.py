from sqlalchemy.orm import Session
from typing import Optional
import logging

from ..core.exceptions import NotFoundError, ValidationError
from ..core.security import utcnow
from ..models.doctor import DoctorProfile, VerificationStatus
from ..models.user import User

logger = logging.getLogger(__name__)


class DoctorService:
    """Admin-side verification of doctor accounts."""

    def __init__(self, db: Session):
        self.db = db

    def get_profile(self, user: User) -> DoctorProfile:
        if user.doctor_profile is None:
            raise NotFoundError("Doctor profile not found")
        return user.doctor_profile

    def verify_doctor(self, doctor_id: int, admin: User) -> DoctorProfile:
        profile = self._get(doctor_id)
        if profile.verification_status == VerificationStatus.VERIFIED:
            raise ValidationError("Doctor is already verified")

        profile.verification_status = VerificationStatus.VERIFIED
        profile.rejection_reason = None
        profile.verified_at = utcnow()
        self.db.commit()
        self.db.refresh(profile)
        logger.info(f"Admin {admin.id} verified doctor profile {profile.id}")
        return profile

    def reject_doctor(self, doctor_id: int, admin: User, reason: Optional[str] = None) -> DoctorProfile:
        profile = self._get(doctor_id)
        profile.verification_status = VerificationStatus.REJECTED
        profile.rejection_reason = reason
        profile.verified_at = None
        self.db.commit()
        self.db.refresh(profile)
        logger.info(f"Admin {admin.id} rejected doctor profile {profile.id}")
        return profile

    def _get(self, doctor_id: int) -> DoctorProfile:
        profile = self.db.query(DoctorProfile).filter(DoctorProfile.id == doctor_id).first()
        if not profile:
            raise NotFoundError("Doctor not found")
        return profile
