"""
Database Schemas for the Bookstore rental backend

Each Pydantic model represents a MongoDB collection.
Collection name is the lowercase of the class name:
- Book -> "book"
- User -> "user"
- Transaction -> "transaction"

Documents are stored with camelCase keys; models accept either spelling.
"""

from datetime import datetime
from typing import Annotated, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field, WithJsonSchema

from database import utcnow

ISSUED = "issued"
RETURNED = "returned"

# Reference to another document, rendered as a string in JSON schema
PyObjectId = Annotated[ObjectId, WithJsonSchema({"type": "string", "description": "ObjectId"})]


class Book(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, description="Book title")
    category: str = Field(..., min_length=1, description="Genre or category")
    rent_per_day: float = Field(..., ge=0, alias="rentPerDay", description="Rent charged per started day")
    author: Optional[str] = Field(None, description="Author name")
    published_year: Optional[int] = Field(None, alias="publishedYear", description="Year of first publication")
    available: bool = Field(True, description="False while an issued transaction holds the book")
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")


class User(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: str = Field(..., min_length=1, description="Unique login name")
    email: str = Field(..., min_length=3, description="Unique email address")
    password: str = Field(..., description="bcrypt hash, never returned by the API")
    role: Literal["admin", "member"] = Field("member", description="Account role")
    registered_at: datetime = Field(default_factory=utcnow, alias="registeredAt")


class Transaction(BaseModel):
    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)

    book: PyObjectId = Field(..., description="Book ObjectId")
    user: PyObjectId = Field(..., description="User ObjectId")
    issue_date: datetime = Field(default_factory=utcnow, alias="issueDate")
    return_date: Optional[datetime] = Field(None, alias="returnDate", description="Absent while issued")
    rent: float = Field(0, ge=0, description="Final rent, set on return")
    status: Literal["issued", "returned"] = Field(ISSUED)


# ----------------------
# Request bodies
# ----------------------

class IssueRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    book_id: str = Field(..., min_length=1, alias="bookId")
    user_id: str = Field(..., min_length=1, alias="userId")


class ReturnRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    return_date: Optional[datetime] = Field(None, alias="returnDate")
