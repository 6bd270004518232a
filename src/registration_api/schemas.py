from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RegistrationRequest(BaseModel):
    # Unknown fields, including any client-supplied "id", are ignored.
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    full_name: Optional[str] = Field(None, alias="fullName", description="Full name")
    mobile_number: Optional[str] = Field(None, alias="mobileNumber", description="Mobile number, free-form")


class RegistrationResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(..., description="Human readable message")
    user_id: int = Field(..., alias="userId", description="Id assigned by storage")


class HealthStatus(BaseModel):
    status: str = Field(..., description="'healthy' or 'unhealthy'")
    error: Optional[str] = None


class ErrorResponse(BaseModel):
    error: str = Field(..., description="Human readable error")
    details: Optional[str] = None
