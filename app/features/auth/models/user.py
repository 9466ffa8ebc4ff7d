from sqlalchemy import JSON, Boolean, Column, Date, String

from app.platform.db.base import BaseModel, new_uuid7


class User(BaseModel):
    __tablename__ = "users"
    email = Column(String(255), unique=True, nullable=False, index=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    phone_number = Column(String(20), unique=True, nullable=True, index=True)
    password_hash = Column(String(255), nullable=True)

    full_name = Column(String(255), nullable=True)
    dob = Column(Date, nullable=True)
    avatar_url = Column(String(500), nullable=True)
    avatar_id = Column(String(255), nullable=True)
    cover_info = Column(JSON, nullable=False, default=dict)

    is_verified = Column(Boolean, nullable=False, default=False)
    # Session epoch; every token carries it and a new value revokes them all
    version = Column(String(36), nullable=False, default=new_uuid7)

    def bump_version(self) -> str:
        self.version = new_uuid7()
        return self.version

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email}, username={self.username})>"
