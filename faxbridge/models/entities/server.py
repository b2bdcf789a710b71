from sqlalchemy import Column, Integer, String

from faxbridge.models.base import Base


class Server(Base):
    """Telephony endpoint row identifying a processing server."""

    __tablename__ = 'iaxfriends'
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(80), nullable=False, index=True)
