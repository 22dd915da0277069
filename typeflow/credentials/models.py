"""
Credential database models.
"""
import uuid
from datetime import datetime, timezone
from typing import Dict, Optional

from sqlalchemy import JSON, Text
from sqlmodel import Field, SQLModel


class Credential(SQLModel, table=True):
    """Connection settings for a database node, scoped to an organization."""
    __tablename__ = "credentials"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    organization_id: str = Field(index=True, max_length=255)
    name: str = Field(max_length=255)
    type: str = Field(max_length=50)  # postgres, mysql, mongodb, redis
    # Sensitive fields are encrypted (see typeflow.utils.security)
    config: Dict = Field(default_factory=dict, sa_type=JSON)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    description: Optional[str] = Field(default=None, sa_type=Text)
