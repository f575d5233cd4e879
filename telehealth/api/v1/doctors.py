from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Optional

from ...core.database import get_db
from ...api.deps import get_admin_user, get_doctor_user
from ...services.doctor_service import DoctorService
from ...schemas.auth import DoctorProfileEnvelope, DoctorProfileResponse, DoctorRejection
from ...models.user import User

router = APIRouter(prefix="/doctors", tags=["Doctors"])


@router.get("/profile", response_model=DoctorProfileEnvelope)
async def get_doctor_profile(
    current_user: User = Depends(get_doctor_user),
    db: Session = Depends(get_db)
):
    """Get current doctor's profile."""
    profile = DoctorService(db).get_profile(current_user)
    return DoctorProfileEnvelope(data=DoctorProfileResponse.model_validate(profile))


@router.put("/{doctor_id}/verify", response_model=DoctorProfileEnvelope)
async def verify_doctor(
    doctor_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user)
):
    """Verify a doctor (admin only)."""
    profile = DoctorService(db).verify_doctor(doctor_id, admin)
    return DoctorProfileEnvelope(data=DoctorProfileResponse.model_validate(profile))


@router.put("/{doctor_id}/reject", response_model=DoctorProfileEnvelope)
async def reject_doctor(
    doctor_id: int,
    rejection: Optional[DoctorRejection] = None,
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user)
):
    """Reject a doctor (admin only)."""
    reason = rejection.reason if rejection else None
    profile = DoctorService(db).reject_doctor(doctor_id, admin, reason)
    return DoctorProfileEnvelope(data=DoctorProfileResponse.model_validate(profile))
