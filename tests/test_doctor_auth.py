from telehealth.models.doctor import DoctorProfile

from .conftest import (
    auth_headers, test_doctor_data, test_doctor_login, test_login_data, test_user_data
)


class TestDoctorAuthentication:

    def test_register_doctor(self, client):
        response = client.post("/api/auth/doctor/register", json=test_doctor_data)
        assert response.status_code == 201

        data = response.json()
        assert data["success"] is True
        assert data["user"]["role"] == "doctor"
        assert data["doctorProfile"]["specialties"] == ["Cardiology"]
        assert data["doctorProfile"]["licenseNumber"] == "LIC-1001"
        assert data["doctorProfile"]["verificationStatus"] == "pending"
        assert "accessToken" in data

    def test_register_doctor_duplicate_license(self, client):
        client.post("/api/auth/doctor/register", json=test_doctor_data)

        other = dict(test_doctor_data, email="other.doc@example.com")
        response = client.post("/api/auth/doctor/register", json=other)
        assert response.status_code == 409
        assert response.json()["message"] == "License number already registered"

    def test_doctor_login(self, client, doctor):
        response = client.post("/api/auth/doctor/login", json=test_doctor_login)
        assert response.status_code == 200

        data = response.json()
        assert data["token"] == data["accessToken"]
        assert data["user"]["role"] == "doctor"
        assert data["doctorProfile"]["userId"] == data["user"]["id"]

    def test_doctor_login_rejects_patient(self, client, patient):
        response = client.post("/api/auth/doctor/login", json=test_login_data)
        assert response.status_code == 401
        assert response.json()["message"] == "Invalid email or password"

    def test_general_login_accepts_doctor(self, client, doctor):
        response = client.post("/api/auth/login", json=test_doctor_login)
        assert response.status_code == 200
        assert response.json()["user"]["role"] == "doctor"

    def test_doctor_token_rejected_on_patient_route(self, client, doctor):
        response = client.get("/api/patients/profile", headers=auth_headers(doctor.access_token))
        assert response.status_code == 403

        data = response.json()
        assert data["success"] is False
        assert data["code"] == "FORBIDDEN"

    def test_patient_token_on_patient_route(self, client, patient):
        response = client.get("/api/patients/profile", headers=auth_headers(patient.access_token))
        assert response.status_code == 200
        assert response.json()["data"]["userId"] == patient.user.id

    def test_patient_token_rejected_on_doctor_route(self, client, patient):
        response = client.get("/api/doctors/profile", headers=auth_headers(patient.access_token))
        assert response.status_code == 403


class TestDoctorProfile:

    def test_get_profile(self, client, doctor):
        response = client.get("/api/doctors/profile", headers=auth_headers(doctor.access_token))
        assert response.status_code == 200
        assert response.json()["data"]["licenseNumber"] == "LIC-1001"

    def test_complete_profile(self, client, doctor):
        profile_data = {
            "qualifications": ["MBBS", "MD"],
            "bio": "Twenty years in practice.",
            "consultationFee": 75.0,
            "availability": {"monday": ["09:00-12:00"]},
        }
        response = client.put(
            "/api/auth/doctor/complete-profile",
            json=profile_data,
            headers=auth_headers(doctor.access_token)
        )
        assert response.status_code == 200

        data = response.json()["data"]
        assert data["qualifications"] == ["MBBS", "MD"]
        assert data["consultationFee"] == 75.0
        assert data["specialties"] == ["Cardiology"]
        assert data["profileCompleted"] is True

    def test_complete_profile_without_license_is_incomplete(self, client):
        data = {k: v for k, v in test_doctor_data.items() if k != "licenseNumber"}
        token = client.post("/api/auth/doctor/register", json=data).json()["accessToken"]

        response = client.put(
            "/api/auth/doctor/complete-profile",
            json={"bio": "New here"},
            headers=auth_headers(token)
        )
        assert response.status_code == 200
        assert response.json()["data"]["profileCompleted"] is False

    def test_complete_profile_requires_doctor(self, client, patient):
        response = client.put(
            "/api/auth/doctor/complete-profile",
            json={"bio": "Not a doctor"},
            headers=auth_headers(patient.access_token)
        )
        assert response.status_code == 403


class TestDoctorVerification:

    def test_admin_verifies_doctor(self, client, doctor, admin_token, db_session):
        profile_id = doctor.doctor_profile.id

        response = client.put(f"/api/doctors/{profile_id}/verify", headers=auth_headers(admin_token))
        assert response.status_code == 200
        assert response.json()["data"]["verificationStatus"] == "verified"

        db_session.expire_all()
        profile = db_session.query(DoctorProfile).filter(DoctorProfile.id == profile_id).first()
        assert profile.verified_at is not None

    def test_verify_twice(self, client, doctor, admin_token):
        profile_id = doctor.doctor_profile.id
        client.put(f"/api/doctors/{profile_id}/verify", headers=auth_headers(admin_token))

        response = client.put(f"/api/doctors/{profile_id}/verify", headers=auth_headers(admin_token))
        assert response.status_code == 400

    def test_admin_rejects_doctor(self, client, doctor, admin_token):
        response = client.put(
            f"/api/doctors/{doctor.doctor_profile.id}/reject",
            json={"reason": "License could not be confirmed"},
            headers=auth_headers(admin_token)
        )
        assert response.status_code == 200

        data = response.json()["data"]
        assert data["verificationStatus"] == "rejected"
        assert data["rejectionReason"] == "License could not be confirmed"

    def test_reject_without_reason(self, client, doctor, admin_token):
        response = client.put(
            f"/api/doctors/{doctor.doctor_profile.id}/reject",
            headers=auth_headers(admin_token)
        )
        assert response.status_code == 200
        assert response.json()["data"]["verificationStatus"] == "rejected"

    def test_non_admin_cannot_verify(self, client, doctor):
        response = client.put(
            f"/api/doctors/{doctor.doctor_profile.id}/verify",
            headers=auth_headers(doctor.access_token)
        )
        assert response.status_code == 403

    def test_verify_unknown_doctor(self, client, admin_token):
        response = client.put("/api/doctors/9999/verify", headers=auth_headers(admin_token))
        assert response.status_code == 404
        assert response.json()["message"] == "Doctor not found"

    def test_admin_can_use_patient_route_without_profile(self, client, admin_token):
        response = client.get("/api/patients/profile", headers=auth_headers(admin_token))
        assert response.status_code == 404
        assert response.json()["message"] == "Patient profile not found"


def test_patient_registration_does_not_create_doctor_profile(client, db_session):
    client.post("/api/auth/register", json=test_user_data)
    assert db_session.query(DoctorProfile).count() == 0
