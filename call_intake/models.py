"""
SQLAlchemy Models for the Call Intake Database

Staff and clients are looked up by the codes embedded in recording filenames.
Calls are created once per recording file; messages carry the candidate tasks
extracted from a call's transcript.
"""

from sqlalchemy import (
    Column,
    BigInteger,
    Boolean,
    Integer,
    String,
    Text,
    Date,
    ForeignKey,
    TIMESTAMP,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()

# SQLite only autoincrements INTEGER PRIMARY KEY columns
IdType = BigInteger().with_variant(Integer, 'sqlite')

SYSTEM_ROLE = 'system'


class Staff(Base):
    """
    Staff table.
    Users of the office, identified in recording filenames by their TP code.
    The system actor that authors generated messages also lives here.
    """
    __tablename__ = 'staff'

    staff_id = Column(IdType, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True)
    role = Column(String, nullable=False, default='staff')
    tp_code = Column(String, nullable=True, index=True)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    calls = relationship("Call", back_populates="staff")
    messages = relationship("Message", back_populates="author")


class Client(Base):
    """
    Clients table.
    Identified in recording filenames either by TP code or by phone number.
    """
    __tablename__ = 'client'

    client_id = Column(IdType, primary_key=True, autoincrement=True)
    company_name = Column(String, nullable=False)
    representative = Column(String, nullable=True)
    contact_number = Column(String, nullable=True, index=True)
    email = Column(Text, nullable=True)
    tp_code = Column(String, nullable=True, index=True)
    status = Column(String, nullable=False, default='active')
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    calls = relationship("Call", back_populates="client")


class Call(Base):
    """
    Calls table.
    One row per recording file; recording_file_name is the dedup key.
    """
    __tablename__ = 'call'

    call_id = Column(IdType, primary_key=True, autoincrement=True)
    staff_id = Column(IdType, ForeignKey('staff.staff_id', ondelete='SET NULL'), nullable=True)
    client_id = Column(IdType, ForeignKey('client.client_id', ondelete='SET NULL'), nullable=True)
    call_date = Column(Date, nullable=False)
    caller_name = Column(String, nullable=False)
    client_name = Column(String, nullable=True)
    phone_number = Column(String, nullable=False, default='')
    recording_file_name = Column(String, nullable=False, unique=True)
    call_duration = Column(String, nullable=False, default='0:00')
    transcript = Column(Text, nullable=True)
    file_exists = Column(Boolean, nullable=False, default=True)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    # Relationships
    staff = relationship("Staff", back_populates="calls")
    client = relationship("Client", back_populates="calls")
    messages = relationship("Message", back_populates="call")


class Message(Base):
    """
    Messages table.
    Conversation entries attached to a call. Generated messages store their
    candidate tasks as JSON in the metadata column.
    """
    __tablename__ = 'message'

    message_id = Column(IdType, primary_key=True, autoincrement=True)
    author_id = Column(IdType, ForeignKey('staff.staff_id'), nullable=False)
    call_id = Column(IdType, ForeignKey('call.call_id', ondelete='CASCADE'), nullable=False)
    content = Column(Text, nullable=False)
    # "metadata" is reserved on declarative classes
    payload = Column('metadata', Text, nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    author = relationship("Staff", back_populates="messages")
    call = relationship("Call", back_populates="messages")
