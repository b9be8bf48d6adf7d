"""Demonstration endpoints for the error mapping.

GET|HEAD /error  -- raises an unhandled RuntimeError (500 INTERNAL_ERROR)
POST     /create -- accepts a contact; GET /create yields 405
"""

from fastapi import APIRouter
from pydantic import BaseModel, field_validator

router = APIRouter(tags=["demo"])


class ContactRequest(BaseModel):
    first_name: str
    last_name: str
    email: str

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        if "@" not in v:
            msg = "email must contain '@'"
            raise ValueError(msg)
        return v


class ContactResponse(BaseModel):
    first_name: str
    last_name: str
    email: str


@router.api_route("/error", methods=["GET", "HEAD"])
async def raise_error() -> None:
    raise RuntimeError("Something went wrong!")


@router.post("/create", response_model=ContactResponse, status_code=201)
async def create(body: ContactRequest) -> ContactResponse:
    return ContactResponse(**body.model_dump())
