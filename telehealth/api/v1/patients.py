from fastapi import APIRouter, Depends

from ...api.deps import get_patient_user
from ...core.exceptions import NotFoundError
from ...schemas.auth import PatientProfileEnvelope, PatientProfileResponse
from ...models.user import User

router = APIRouter(prefix="/patients", tags=["Patients"])


@router.get("/profile", response_model=PatientProfileEnvelope)
async def get_patient_profile(
    current_user: User = Depends(get_patient_user)
):
    """Get the current patient's profile."""
    if current_user.patient is None:
        raise NotFoundError("Patient profile not found")
    return PatientProfileEnvelope(data=PatientProfileResponse.model_validate(current_user.patient))
