from sqlalchemy import Column, String, DateTime, BigInteger, ForeignKey
from sqlalchemy.orm import relationship
from database import Base


# ─────────────────────────────────────────────────────────────
# Login Sessions
# ─────────────────────────────────────────────────────────────
class UserSession(Base):
    __tablename__ = "sessions"

    token = Column(String, primary_key=True)
    username = Column(String, nullable=False)
    created = Column(DateTime, nullable=False)
    accessed = Column(DateTime, nullable=False, index=True)

    def to_dict(self) -> dict:
        return {
            "token": self.token,
            "username": self.username,
            "created": self.created.isoformat(),
            "accessed": self.accessed.isoformat(),
        }


# ─────────────────────────────────────────────────────────────
# Download Links
# ─────────────────────────────────────────────────────────────
class Download(Base):
    __tablename__ = "downloads"

    token = Column(String, primary_key=True)
    username = Column(String, nullable=False)
    vault = Column(String, nullable=False)
    created = Column(DateTime, nullable=False, index=True)

    files = relationship(
        "DownloadFile",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class DownloadFile(Base):
    __tablename__ = "download_files"

    token = Column(String, ForeignKey("downloads.token", ondelete="CASCADE"), primary_key=True)
    path = Column(String, primary_key=True)


# ─────────────────────────────────────────────────────────────
# In-flight Uploads
# ─────────────────────────────────────────────────────────────
class Upload(Base):
    __tablename__ = "uploads"

    token = Column(String, primary_key=True)
    username = Column(String, nullable=False)
    vault = Column(String, nullable=False)
    path_temp = Column(String, nullable=False)
    path_dest = Column(String, nullable=False)
    size = Column(BigInteger, nullable=False)
    created = Column(DateTime, nullable=False)
