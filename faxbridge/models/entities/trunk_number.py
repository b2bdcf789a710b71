from sqlalchemy import Boolean, Column, Integer, String

from faxbridge.models.base import Base


class TrunkNumber(Base):
    __tablename__ = 'trunk_numbers'
    id = Column(Integer, primary_key=True, index=True)
    full_number = Column(String(32), nullable=False, index=True)
    header_ppid = Column(String(255), nullable=True)
    ps_endpoints_id = Column(String(40), nullable=False)
    is_fax = Column(Boolean, nullable=False, default=False)
