from sqlalchemy import Column, DateTime, Float, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class InboundStatus(Base):
    """One registry document as last seen by a sync."""
    __tablename__ = "inbound_status"

    uuid = Column(String(100), primary_key=True)
    submissionUid = Column(String(100), index=True)
    longId = Column(String(255))
    internalId = Column(String(255))

    typeName = Column(String(100))
    typeVersionName = Column(String(100))

    issuerTin = Column(String(50))
    issuerName = Column(String(255))
    receiverId = Column(String(50))
    receiverName = Column(String(255))
    receiverTIN = Column(String(50))
    receiverRegistrationNo = Column(String(100))

    dateTimeIssued = Column(DateTime(timezone=True))
    dateTimeReceived = Column(DateTime(timezone=True), index=True)
    dateTimeValidated = Column(DateTime(timezone=True), index=True)

    totalSales = Column(Float, default=0, nullable=False)
    totalExcludingTax = Column(Float, default=0, nullable=False)
    totalDiscount = Column(Float, default=0, nullable=False)
    totalNetAmount = Column(Float, default=0, nullable=False)
    totalPayableAmount = Column(Float, default=0, nullable=False)
    documentCurrency = Column(String(10))

    status = Column(String(50))
    documentStatusReason = Column(String(500))
    last_sync_date = Column(DateTime(timezone=True))
    sync_status = Column(String(20))
