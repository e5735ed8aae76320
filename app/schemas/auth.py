from pydantic import BaseModel, EmailStr, TypeAdapter, ValidationError

_email_adapter = TypeAdapter(EmailStr)


def is_valid_email(value: str | None) -> bool:
    try:
        _email_adapter.validate_python(value)
    except ValidationError:
        return False
    return True


class LoginRequest(BaseModel):
    email: str
    password: str


class RegisterRequest(BaseModel):
    fullName: str = ""
    email: str = ""
    password: str = ""
    role: str = "visitor"
    contactNumber: str = ""
    department: str | None = None


class ProfileUpdateRequest(BaseModel):
    fullName: str | None = None
    department: str | None = None
    contactNumber: str | None = None


class AuthUser(BaseModel):
    id: str
    fullName: str
    email: str
    role: str
    department: str | None = None
    contactNumber: str = ""
    status: str = "active"


class AuthResponse(BaseModel):
    accessToken: str
    tokenType: str = "bearer"
    user: AuthUser


class HostDirectoryEntry(BaseModel):
    id: str
    fullName: str
    department: str | None = None
    contactNumber: str = ""
