import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from carelink.auth import jwt_handler
from carelink.database import get_db
from carelink.errors import AuthorizationFailed
from carelink.models.user import DOCTOR_ROLE, PATIENT_ROLE, User

security = HTTPBearer()


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    email = payload.get("sub")
    if not email:
        raise HTTPException(status_code=401, detail="Invalid token subject")

    user = db.query(User).filter(User.email == email.strip().lower()).first()
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def require_role(user: User, role: str) -> User:
    if user.role != role:
        raise AuthorizationFailed()
    return user


def get_current_patient(current_user: User = Depends(get_current_user)) -> User:
    return require_role(current_user, PATIENT_ROLE)


def get_current_doctor(current_user: User = Depends(get_current_user)) -> User:
    return require_role(current_user, DOCTOR_ROLE)
