from sqlalchemy import Column, String, Text, Boolean, ForeignKey, DateTime
from sqlalchemy.orm import relationship
from uuid import uuid4

from automation.core.clock import utcnow
from automation.db.base import Base


class Business(Base):
    """Business owned by an organization. Read-only for the engine."""

    __tablename__ = "businesses"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    organization_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    industry = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    customers = relationship("Customer", back_populates="business")

    def __repr__(self):
        return f"<Business {self.name}>"


class Customer(Base):
    """Customer record, including the automation guard flag."""

    __tablename__ = "customers"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    organization_id = Column(String, nullable=False, index=True)
    business_id = Column(String, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False)
    name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    service_type = Column(String, nullable=True)
    status = Column(String, nullable=True)
    sms_opt_in = Column(Boolean, default=False)
    sms_opt_out = Column(Boolean, default=False)

    # Automation state. The guard is only written by the trigger dispatcher.
    ready_for_automation = Column(Boolean, nullable=False, default=False)
    automation_triggered = Column(Boolean, nullable=False, default=False, index=True)
    automation_triggered_at = Column(DateTime, nullable=True)
    service_completed_date = Column(DateTime, nullable=True, index=True)

    created_at = Column(DateTime, default=utcnow)

    business = relationship("Business", back_populates="customers", lazy="joined")

    @property
    def can_receive_sms(self) -> bool:
        return bool(self.phone and self.phone.strip() and self.sms_opt_in and not self.sms_opt_out)

    @property
    def has_contact_details(self) -> bool:
        return bool((self.email and self.email.strip()) or (self.phone and self.phone.strip()))

    def __repr__(self):
        return f"<Customer {self.name}>"


class ReviewRequest(Base):
    """A review request sent to a customer."""

    __tablename__ = "review_requests"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    customer_id = Column(String, ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True)
    business_id = Column(String, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False)
    delivery_method = Column(String, nullable=False, default="EMAIL")
    status = Column(String, nullable=False, default="SENT")
    message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)
    completed_at = Column(DateTime, nullable=True)

    customer = relationship("Customer", lazy="joined")

    def __repr__(self):
        return f"<ReviewRequest {self.id} ({self.status})>"
