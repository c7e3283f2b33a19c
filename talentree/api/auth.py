from typing import List

from fastapi import APIRouter
from pydantic import BaseModel, Field

from talentree.core.auth import Role, create_token

router = APIRouter()


class MockLogin(BaseModel):
    user_id: str = Field(min_length=1)
    roles: List[Role]


@router.post("/mock-login")
def mock_login(payload: MockLogin):
    """Issue a signed token for any user and roles. Development only."""
    roles = [r.value for r in payload.roles]
    token = create_token(payload.user_id, roles)
    return {"access_token": token, "token_type": "bearer", "roles": roles}
