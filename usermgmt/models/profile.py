"""User profile model, one-to-one with User."""

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import relationship

from usermgmt.db.base import Base


class UserProfile(Base):
    """Optional personal details plus privacy flags.

    ``address_json``, ``preferences_json`` and ``social_links_json`` hold
    serialized objects and are parsed on read.
    """
    __tablename__ = "user_profiles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False, index=True,
    )
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    bio = Column(Text, nullable=True)
    avatar_url = Column(String(500), nullable=True)
    phone = Column(String(30), nullable=True)
    date_of_birth = Column(Date, nullable=True)
    website = Column(String(500), nullable=True)
    company = Column(String(255), nullable=True)
    job_title = Column(String(255), nullable=True)
    location = Column(String(255), nullable=True)

    address_json = Column(Text, nullable=True)
    preferences_json = Column(Text, nullable=True)
    social_links_json = Column(Text, nullable=True)

    is_public = Column(Boolean, default=True, nullable=False)
    show_email = Column(Boolean, default=False, nullable=False)
    show_phone = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    user = relationship("User", back_populates="profile")
