from app.core.database import Base
from app.models.verification_code import VerificationCode

__all__ = [
    "Base",
    "VerificationCode",
]
