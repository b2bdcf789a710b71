from sqlalchemy import Column, DateTime, ForeignKey, Integer, LargeBinary, String

from faxbridge.models.base import Base


class IncomingFax(Base):
    __tablename__ = 'faxes_incoming'
    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, nullable=False, index=True)
    iaxfriends_id = Column(Integer, ForeignKey('iaxfriends.id'), nullable=False)
    filename = Column(String(255), nullable=False)
    state = Column(String(20), nullable=False, default='unread')
    received_at = Column(DateTime(timezone=True), nullable=False)
    sender = Column('from', String(64), nullable=False)
    incoming_number_id = Column(Integer, ForeignKey('trunk_numbers.id'), nullable=False)
    fax_data = Column(LargeBinary, nullable=False)
