from pydantic import BaseModel, EmailStr, field_validator


class UserCreate(BaseModel):
    email: EmailStr
    password: str
    full_name: str = ""
    company_id: str | None = None

    @field_validator("password")
    @classmethod
    def password_min_length(cls, v: str) -> str:
        if len(v) < 8:
            raise ValueError("Password must be at least 8 characters.")
        return v


class UserLogin(BaseModel):
    email: EmailStr
    password: str
    # Issued by the CAPTCHA widget; only required once the gate trips
    captcha_token: str | None = None


class UserResponse(BaseModel):
    id: int
    email: str
    full_name: str
    company_id: str | None = None


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
