from sqlalchemy import Column, ForeignKey, Integer, LargeBinary, String

from faxbridge.models.base import Base


class OutgoingFax(Base):
    __tablename__ = 'faxes_outgoing'
    id = Column(Integer, primary_key=True, index=True)
    fax_data = Column(LargeBinary, nullable=False)
    filename = Column(String(255), nullable=False)
    outgoing_number_id = Column(Integer, ForeignKey('trunk_numbers.id'), nullable=False)
    destination = Column('to', String(64), nullable=False)
    state = Column(String(20), nullable=False, default='created', index=True)
    iaxfriends_id = Column(Integer, ForeignKey('iaxfriends.id'), nullable=False)
