import uuid
from sqlalchemy import Column, String, DateTime, Integer, JSON
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base

Base = declarative_base()

class Template(Base):
    __tablename__ = "template"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    uuid = Column(String, unique=True, nullable=False)
    name = Column(String, nullable=False)
    category = Column(String)
    price = Column(Integer, default=0)
    tags = Column(JSON)
    svg = Column(JSON)  # slot number -> SVG filename, sometimes stored as JSON text
    pdf = Column(String)
    preview_uri = Column(String)
    create_time = Column(DateTime)
    update_time = Column(DateTime)
