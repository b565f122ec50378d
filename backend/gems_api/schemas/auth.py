from pydantic import BaseModel


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class AdminRead(BaseModel):
    username: str
    role: str
