from pydantic import BaseModel


class RegisterRequest(BaseModel):
    username: str
    password: str
    email: str

class LoginRequest(BaseModel):
    username: str
    password: str

class UserInfo(BaseModel):
    username: str

class RegisterResponse(BaseModel):
    message: str
    user: UserInfo

class LoginResponse(BaseModel):
    message: str
    token: str
    user: UserInfo

class UploadResponse(BaseModel):
    path: str
