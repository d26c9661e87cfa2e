from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from models import Role

DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"


class CategoryIn(BaseModel):
    type: Optional[str] = None
    color: Optional[str] = None


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    type: str
    color: str


class CategoryDeleteIn(BaseModel):
    types: Optional[list[str]] = None


class TransactionIn(BaseModel):
    username: Optional[str] = None
    # kept loose so a non-numeric string reaches the "not a number" check
    amount: Optional[Union[float, str]] = None
    type: Optional[str] = None


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    username: str
    amount: float
    type: str
    date: datetime

    @field_serializer("date")
    def serialize_date(self, value: datetime) -> str:
        return value.strftime(DATE_FORMAT)


class TransactionDeleteIn(BaseModel):
    id: Optional[str] = Field(default=None, alias="_id")


class TransactionBulkDeleteIn(BaseModel):
    ids: Optional[list[str]] = Field(default=None, alias="_ids")


class RegisterIn(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class LoginIn(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    username: str
    email: str
    role: Role


class GroupIn(BaseModel):
    name: Optional[str] = None
    member_emails: Optional[list[str]] = Field(default=None, alias="memberEmails")


class GroupMembersIn(BaseModel):
    emails: Optional[list[str]] = None


class GroupDeleteIn(BaseModel):
    name: Optional[str] = None


class UserDeleteIn(BaseModel):
    email: Optional[str] = None
