"""User model definitions."""

from sqlalchemy import Column, Integer, String
from cadastraqui.database import Base


class User(Base):
    """Represents a platform user as mirrored from the identity service."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    name = Column(String)
    role = Column(String)  # CANDIDATO/ASSISTENTE_SOCIAL/ADMIN/...
    tenant_id = Column(String, index=True)
