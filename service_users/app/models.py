"""
User data models for the User Service.
"""

from pydantic import BaseModel, Field


class User(BaseModel):
    """User record as exposed to clients and cached."""

    username: str = Field(..., min_length=1, description="Unique username")
    email: str = Field(..., min_length=1, description="Email address")


class UserCreateRequest(BaseModel):
    """Request model for user creation."""
    username: str = Field(..., min_length=1, description="Unique username")
    email: str = Field(..., min_length=1, description="Email address")


class UserUpdateRequest(BaseModel):
    """Request model for user update. Only the email is mutable."""
    email: str = Field(..., min_length=1, description="New email address")
