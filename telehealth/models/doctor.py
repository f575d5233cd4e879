from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Boolean, Text, Float, JSON, Enum as SQLEnum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum

from ..core.database import Base


class VerificationStatus(str, enum.Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class DoctorProfile(Base):
    __tablename__ = "doctor_profiles"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)

    # Professional information
    specialties = Column(JSON, nullable=False, default=list)
    license_number = Column(String(50), nullable=True, unique=True)
    experience_years = Column(Integer, nullable=True)
    qualifications = Column(JSON, nullable=False, default=list)
    bio = Column(Text, nullable=True)
    consultation_fee = Column(Float, nullable=True)

    # Availability, e.g. {"monday": ["09:00-12:00"]}
    availability = Column(JSON, nullable=False, default=dict)
    is_available = Column(Boolean, default=True)

    # Verification (documents are references to externally stored uploads)
    verification_documents = Column(JSON, nullable=False, default=list)
    verification_status = Column(SQLEnum(VerificationStatus), default=VerificationStatus.PENDING, nullable=False)
    rejection_reason = Column(String(255), nullable=True)
    verified_at = Column(DateTime, nullable=True)
    profile_completed = Column(Boolean, default=False)

    # Timestamps
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    user = relationship("User", back_populates="doctor_profile")

    def __repr__(self):
        return f"<DoctorProfile(id={self.id}, user_id={self.user_id}, status='{self.verification_status}')>"
