"""
MediMantra Telehealth

FastAPI back end for patient/doctor authentication and sessions (access and
refresh tokens, role-based access control, account verification), plus an
async session client that drives login, refresh and logout against it.
"""

__version__ = "1.0.0"
