"""Key/value blob table used for persisted history and learned state."""

from sqlalchemy import Column, DateTime, LargeBinary, String

from race_predictor.config import utc_now_naive
from race_predictor.models.database import Base


class StoredBlob(Base):
    """One opaque value per storage key."""

    __tablename__ = "stored_blobs"

    key = Column(String, primary_key=True)
    value = Column(LargeBinary, nullable=False)
    updated_at = Column(DateTime, default=utc_now_naive, onupdate=utc_now_naive)

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "size": len(self.value or b""),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
