from decimal import Decimal
from datetime import date
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from .document_types import DocumentType, normalize_document_type
from .errors import ValidationError
from .formatter import parse_date, parse_decimal, quantize_money


class Party(BaseModel):
    """Customer or vendor shown on the document."""
    name: Optional[str] = None
    uid: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None

    def contact_lines(self) -> List[str]:
        locality = ""
        if self.city and self.state:
            locality = f"{self.city}, {self.state} {self.zip_code or ''}".strip()
        else:
            locality = self.city or self.state or ""
        return [part for part in (self.address, locality, self.phone, self.email) if part]


class LineItem(BaseModel):
    description: Optional[str] = None
    quantity: Decimal = Decimal("0")
    unit_price: Decimal = Decimal("0")
    line_total: Optional[Decimal] = None
    note: Optional[str] = None

    @field_validator("quantity", "unit_price", mode="before")
    @classmethod
    def parse_amounts(cls, v):
        return parse_decimal(v)

    @field_validator("line_total", mode="before")
    @classmethod
    def parse_line_total(cls, v):
        if v is None or v == "":
            return None
        return parse_decimal(v)

    @property
    def total(self) -> Decimal:
        if self.line_total is not None:
            return quantize_money(self.line_total)
        return quantize_money(self.quantity * self.unit_price)


class PaymentEntry(BaseModel):
    payment_date: Optional[date] = None
    amount: Decimal = Decimal("0")
    method: Optional[str] = None
    note: Optional[str] = None

    @field_validator("payment_date", mode="before")
    @classmethod
    def parse_payment_date(cls, v):
        return parse_date(v)

    @field_validator("amount", mode="before")
    @classmethod
    def parse_amount(cls, v):
        return parse_decimal(v)


class DocumentData(BaseModel):
    """
    Structured data for one invoice, estimate or purchase order.

    Stored totals are optional inputs. ``balance`` is never stored: it is derived
    from ``grand_total`` and ``paid`` every time it is read.
    """
    document_type: DocumentType
    document_id: str = Field(..., min_length=1)
    number: Optional[str] = None
    issue_date: Optional[date] = None
    status: Optional[str] = None
    notes: Optional[str] = None
    is_sample: bool = False

    party: Party = Field(default_factory=Party)
    line_items: List[LineItem] = Field(default_factory=list)
    payments: List[PaymentEntry] = Field(default_factory=list)

    tax_rate: Optional[Decimal] = None
    tax_amount: Optional[Decimal] = None
    subtotal: Optional[Decimal] = None
    total: Optional[Decimal] = None
    amount_paid: Optional[Decimal] = None

    @field_validator("document_type", mode="before")
    @classmethod
    def normalize_type(cls, v):
        try:
            return normalize_document_type(v)
        except ValidationError as e:
            raise ValueError(str(e))

    @field_validator("document_id", mode="before")
    @classmethod
    def stringify_id(cls, v):
        if v is None:
            return v
        return str(v).strip()

    @field_validator("issue_date", mode="before")
    @classmethod
    def parse_document_date(cls, v):
        return parse_date(v)

    @field_validator("tax_rate", "tax_amount", "subtotal", "total", "amount_paid", mode="before")
    @classmethod
    def parse_optional_amounts(cls, v):
        if v is None or v == "":
            return None
        return parse_decimal(v)

    @property
    def subtotal_amount(self) -> Decimal:
        if self.subtotal is not None:
            return quantize_money(self.subtotal)
        return quantize_money(sum((item.total for item in self.line_items), Decimal("0")))

    @property
    def tax(self) -> Decimal:
        if self.tax_amount is not None:
            return quantize_money(self.tax_amount)
        if self.tax_rate:
            return quantize_money(self.subtotal_amount * self.tax_rate / Decimal("100"))
        return Decimal("0.00")

    @property
    def grand_total(self) -> Decimal:
        if self.total is not None:
            return quantize_money(self.total)
        return quantize_money(self.subtotal_amount + self.tax)

    @property
    def paid(self) -> Decimal:
        if self.payments:
            return quantize_money(sum((p.amount for p in self.payments), Decimal("0")))
        if self.amount_paid is not None:
            return quantize_money(self.amount_paid)
        return Decimal("0.00")

    @property
    def balance(self) -> Decimal:
        return self.grand_total - self.paid
