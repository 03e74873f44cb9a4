from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Tuple
import uuid

ZERO = Decimal('0')
HUNDRED = Decimal('100')
# upper bounds keep every derived amount well inside the Decimal context
MAX_AMOUNT = Decimal('1000000000')
MAX_QUANTITY = 10000


def new_id() -> str:
    """Opaque token used as a stable identity for items and participants"""
    return uuid.uuid4().hex


def to_amount(value) -> Decimal:
    """Convert raw input to a non-negative Decimal.

    None, empty strings, unparsable and non-finite values all become 0,
    and anything above MAX_AMOUNT is capped.
    Floats go through str() so 28.5 stays 28.5 rather than its binary expansion.
    """
    if value is None or value == '':
        return ZERO
    if isinstance(value, bool):
        return ZERO
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError):
        return ZERO
    if not amount.is_finite() or amount < 0:
        return ZERO
    return min(amount, MAX_AMOUNT)


def to_rate(value) -> Decimal:
    """Convert raw input to a percentage clamped to [0, 100]"""
    return min(to_amount(value), HUNDRED)


def to_quantity(value) -> int:
    """Convert raw input to a whole quantity between 1 and MAX_QUANTITY"""
    quantity = int(to_amount(value))
    return min(max(quantity, 1), MAX_QUANTITY)


@dataclass(frozen=True)
class Participant:
    id: str
    name: str

    def to_dict(self):
        return {'id': self.id, 'name': self.name}


@dataclass(frozen=True)
class LineItem:
    id: str
    name: str = 'New Item'
    unit_price: Decimal = ZERO
    quantity: int = 1
    # participant ids, ordered and without duplicates
    assigned_to: Tuple[str, ...] = ()

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'unit_price': float(self.unit_price),
            'quantity': self.quantity,
            'line_total': float(self.line_total),
            'assigned_to': list(self.assigned_to),
        }


@dataclass(frozen=True)
class ChargeConfig:
    vat_rate: Decimal = ZERO
    service_charge_rate: Decimal = ZERO
    tip_amount: Decimal = ZERO

    @classmethod
    def from_raw(cls, vat_rate=None, service_charge_rate=None, tip_amount=None):
        """Build a config from unvalidated input, clamping every field"""
        return cls(
            vat_rate=to_rate(vat_rate),
            service_charge_rate=to_rate(service_charge_rate),
            tip_amount=to_amount(tip_amount),
        )

    def to_dict(self):
        return {
            'vat_rate': float(self.vat_rate),
            'service_charge_rate': float(self.service_charge_rate),
            'tip_amount': float(self.tip_amount),
        }


@dataclass(frozen=True)
class Bill:
    """Immutable snapshot of everything the split is computed from"""
    items: Tuple[LineItem, ...] = ()
    participants: Tuple[Participant, ...] = ()
    charges: ChargeConfig = field(default_factory=ChargeConfig)

    def to_dict(self):
        return {
            'items': [item.to_dict() for item in self.items],
            'participants': [p.to_dict() for p in self.participants],
            'charges': self.charges.to_dict(),
        }
