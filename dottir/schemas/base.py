"""
Schemas Pydantic de base pour Dottir
Configuration commune et response standard
"""
from typing import Optional

from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    """Schema de base avec configuration commune"""

    model_config = ConfigDict(
        from_attributes=True,  # Permet la conversion depuis ORM
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="forbid",  # Rejeter les champs inconnus (securite)
    )


class ResponseBase(BaseSchema):
    """Response de base pour toutes les reponses API"""
    success: bool = True
    message: Optional[str] = None

