"""Application (candidatura) model definitions."""

from sqlalchemy import Column, Integer, ForeignKey, String
from cadastraqui.database import Base


class Application(Base):
    """A candidate's submission to an edital; appointments attach to it."""
    __tablename__ = "applications"

    id = Column(Integer, primary_key=True)
    candidate_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    tenant_id = Column(String, index=True)
    edital_title = Column(String)
