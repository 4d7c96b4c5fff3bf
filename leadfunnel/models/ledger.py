"""
LedgerRecord — typed snapshot of one lead/payment row from the spreadsheet.

Only services.ledger builds these; every field is already normalized so
downstream code compares with plain equality.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class LedgerRecord:
    timestamp: str
    parsed_date: Optional[datetime]
    inquiry_id: str
    transaction_id: str
    status: str                 # paid | pending | failed | canceled
    payment_method: str         # cashplus | card | cash | bank_transfer | other
    amount: float
    final_amount: float
    currency: str
    course: str
    normalized_course: str
    language: str
    customer_name: str = ''
    customer_email: str = ''
    customer_phone: str = ''
    qualification: str = ''
    experience: str = ''
    cashplus_code: str = ''
    last4: str = ''
    utm_source: str = ''
    utm_medium: str = ''
    utm_campaign: str = ''
    utm_term: str = ''
    utm_content: str = ''

    @property
    def is_paid(self):
        return self.status == 'paid'

    def to_dict(self):
        return {
            'timestamp': self.timestamp,
            'date': self.parsed_date.isoformat() if self.parsed_date else None,
            'inquiryId': self.inquiry_id,
            'transactionId': self.transaction_id,
            'status': self.status,
            'paymentMethod': self.payment_method,
            'amount': self.amount,
            'finalAmount': self.final_amount,
            'currency': self.currency,
            'course': self.course,
            'normalizedCourse': self.normalized_course,
            'language': self.language,
            'customerName': self.customer_name,
            'customerEmail': self.customer_email,
            'customerPhone': self.customer_phone,
            'qualification': self.qualification,
            'experience': self.experience,
            'utm_source': self.utm_source,
            'utm_medium': self.utm_medium,
            'utm_campaign': self.utm_campaign,
            'utm_term': self.utm_term,
            'utm_content': self.utm_content,
        }
