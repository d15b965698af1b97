from sqlalchemy import Column, Integer, Float, String, Text, DateTime
from .database import Base


class TestResult(Base):
    __tablename__ = "test_results"
    # Not a pytest test class despite the name.
    __test__ = False
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    # Client supplied, stored as received
    timestamp = Column(Text)
    ip = Column(Text)
    download = Column(Float)
    upload = Column(Float)
    ping = Column(Float)
    jitter = Column(Float)
    # Owner identity; NULL for anonymous submissions
    user_email = Column(String, index=True, nullable=True)


class UserSession(Base):
    __tablename__ = "user_sessions"

    id = Column(String, primary_key=True)
    # JSON encoded provider profile
    profile = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
