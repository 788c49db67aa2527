from sqlalchemy.orm import declarative_base
from sqlalchemy import Column, String, DateTime, JSON, Text
from sqlalchemy.sql import func

Base = declarative_base()


class AppStateRecord(Base):
    """One JSON document ({"students": [...]}) per sheet / school-year id."""
    __tablename__ = "app_state"
    id = Column(String(255), primary_key=True)
    students_json = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class AccountOverride(Base):
    """Password set through the dashboard; wins over the sheet's passwords."""
    __tablename__ = "account_overrides"
    username = Column(String(255), primary_key=True)
    mhs = Column(String(255), index=True)
    new_password = Column(String(255))
    note = Column(Text)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
