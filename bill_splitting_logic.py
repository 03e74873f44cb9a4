from typing import List, Dict, Any, Iterable, Optional
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
import dataclasses
import logging

from models import (
    Bill, ChargeConfig, LineItem, Participant, HUNDRED, ZERO,
    new_id, to_amount, to_quantity, to_rate,
)

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')
RECONCILIATION_TOLERANCE = Decimal('0.05')


class UnassignedPolicy(str, Enum):
    """What happens to a line item nobody has been assigned to"""
    SPLIT_EQUALLY = 'split_equally'
    NO_ONE = 'no_one'


class BillSplitError(ValueError):
    pass


class ItemNotFound(BillSplitError):
    pass


class ParticipantNotFound(BillSplitError):
    pass


class DuplicateParticipant(BillSplitError):
    pass


def round_currency(amount: Decimal) -> Decimal:
    """Round to 2 decimal places for currency"""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


# ---------- Charge calculator ----------

def compute_subtotal(items: Iterable[LineItem]) -> Decimal:
    return sum((item.line_total for item in items), ZERO)


def compute_charges(subtotal: Decimal, vat_rate: Decimal, service_charge_rate: Decimal,
                    tip_amount: Decimal) -> Dict[str, Decimal]:
    """
    Derive VAT, service charge and total from the subtotal.

    Every amount is rounded as soon as it is computed: the service charge is
    taken on the already rounded VAT-inclusive amount and the total is the
    sum of rounded components.
    """
    vat_amount = round_currency(subtotal * vat_rate / HUNDRED)
    service_charge_amount = round_currency((subtotal + vat_amount) * service_charge_rate / HUNDRED)
    total = round_currency(subtotal + vat_amount + service_charge_amount + tip_amount)
    return {
        'vat_amount': vat_amount,
        'service_charge_amount': service_charge_amount,
        'total': total,
    }


# ---------- Allocation engine ----------

def compute_breakdown_by_id(
    items: Iterable[LineItem],
    participants: List[Participant],
    vat_amount: Decimal,
    service_charge_amount: Decimal,
    tip_amount: Decimal,
    subtotal: Decimal,
    unassigned_policy: UnassignedPolicy = UnassignedPolicy.SPLIT_EQUALLY,
) -> Dict[str, Dict[str, Decimal]]:
    """Per-participant item totals and shares, keyed by participant id"""
    breakdown = {p.id: {'item_total': ZERO, 'share': ZERO} for p in participants}

    for item in items:
        line_total = item.line_total
        if item.assigned_to:
            per_person = line_total / len(item.assigned_to)
            for participant_id in item.assigned_to:
                if participant_id in breakdown:
                    breakdown[participant_id]['item_total'] += per_person
                else:
                    logger.debug("Ignoring unknown participant %s on item %s", participant_id, item.id)
        elif unassigned_policy == UnassignedPolicy.SPLIT_EQUALLY and breakdown:
            per_person = line_total / len(breakdown)
            for entry in breakdown.values():
                entry['item_total'] += per_person

    for entry in breakdown.values():
        item_total = entry['item_total']
        percentage = item_total / subtotal if subtotal > 0 else ZERO
        share = (
            item_total
            + vat_amount * percentage
            + service_charge_amount * percentage
            + tip_amount * percentage
        )
        entry['share'] = round_currency(share)

    return breakdown


def compute_breakdown(
    items: Iterable[LineItem],
    participants: List[Participant],
    vat_amount: Decimal,
    service_charge_amount: Decimal,
    tip_amount: Decimal,
    subtotal: Decimal,
    unassigned_policy: UnassignedPolicy = UnassignedPolicy.SPLIT_EQUALLY,
) -> Dict[str, Dict[str, Decimal]]:
    """Same as compute_breakdown_by_id, keyed by participant name for display"""
    by_id = compute_breakdown_by_id(
        items, participants, vat_amount, service_charge_amount, tip_amount, subtotal, unassigned_policy
    )
    return {p.name: by_id[p.id] for p in participants}


# ---------- Reconciliation ----------

def check_reconciliation(total: Decimal, breakdown: Dict[str, Dict[str, Decimal]],
                         tolerance: Decimal = RECONCILIATION_TOLERANCE) -> Dict[str, Any]:
    """Compare the bill total with the sum of every participant's share"""
    allocated = sum((entry['share'] for entry in breakdown.values()), ZERO)
    discrepancy = total - allocated
    return {
        'is_match': abs(discrepancy) < tolerance,
        'discrepancy': discrepancy,
    }


def calculate_split(bill: Bill,
                    unassigned_policy: UnassignedPolicy = UnassignedPolicy.SPLIT_EQUALLY,
                    tolerance: Decimal = RECONCILIATION_TOLERANCE) -> Dict[str, Any]:
    """Run charges, allocation and reconciliation over one bill snapshot"""
    charges = bill.charges
    subtotal = compute_subtotal(bill.items)
    amounts = compute_charges(subtotal, charges.vat_rate, charges.service_charge_rate, charges.tip_amount)
    breakdown = compute_breakdown(
        bill.items,
        list(bill.participants),
        amounts['vat_amount'],
        amounts['service_charge_amount'],
        charges.tip_amount,
        subtotal,
        unassigned_policy,
    )
    reconciliation = check_reconciliation(amounts['total'], breakdown, tolerance)
    if not reconciliation['is_match']:
        logger.warning(
            "Split does not reconcile: total %s, discrepancy %s",
            amounts['total'], reconciliation['discrepancy'],
        )

    return {
        'summary': {
            'subtotal': subtotal,
            'vat_rate': charges.vat_rate,
            'vat_amount': amounts['vat_amount'],
            'service_charge_rate': charges.service_charge_rate,
            'service_charge_amount': amounts['service_charge_amount'],
            'tip_amount': charges.tip_amount,
            'total': amounts['total'],
        },
        'breakdown': breakdown,
        'reconciliation': reconciliation,
    }


# ---------- Session state ----------

class BillSplitter:
    """Holds the current bill and replaces its snapshot on every edit"""

    ITEM_FIELDS = ('name', 'unit_price', 'quantity', 'assigned_to')

    def __init__(self, charges: Optional[ChargeConfig] = None,
                 unassigned_policy: UnassignedPolicy = UnassignedPolicy.SPLIT_EQUALLY,
                 tolerance: Decimal = RECONCILIATION_TOLERANCE):
        self._bill = Bill(charges=charges or ChargeConfig())
        self.unassigned_policy = UnassignedPolicy(unassigned_policy)
        self.tolerance = tolerance

    @property
    def items(self):
        return self._bill.items

    @property
    def participants(self):
        return self._bill.participants

    @property
    def charges(self):
        return self._bill.charges

    def snapshot(self) -> Bill:
        return self._bill

    def _get_item(self, item_id: str) -> LineItem:
        item = next((i for i in self._bill.items if i.id == item_id), None)
        if not item:
            raise ItemNotFound(f"Item {item_id} not found")
        return item

    def _get_participant(self, participant_id: str) -> Participant:
        participant = next((p for p in self._bill.participants if p.id == participant_id), None)
        if not participant:
            raise ParticipantNotFound(f"Participant {participant_id} not found")
        return participant

    def _clean_assignees(self, assigned_to) -> tuple:
        cleaned = []
        for participant_id in assigned_to or ():
            self._get_participant(participant_id)
            if participant_id not in cleaned:
                cleaned.append(participant_id)
        return tuple(cleaned)

    def add_participant(self, name: str) -> Participant:
        """Add a participant; names are trimmed and must be unique"""
        name = str(name or '').strip()
        if not name:
            raise BillSplitError("Participant name is required")
        if any(p.name == name for p in self._bill.participants):
            raise DuplicateParticipant(f"Participant {name} already exists")

        participant = Participant(id=new_id(), name=name)
        self._bill = dataclasses.replace(self._bill, participants=self._bill.participants + (participant,))
        logger.info("Added participant %s (%s)", participant.name, participant.id)
        return participant

    def remove_participant(self, participant_id: str) -> Participant:
        """Remove a participant and unassign them from every item"""
        participant = self._get_participant(participant_id)
        items = tuple(
            dataclasses.replace(item, assigned_to=tuple(pid for pid in item.assigned_to if pid != participant_id))
            for item in self._bill.items
        )
        participants = tuple(p for p in self._bill.participants if p.id != participant_id)
        self._bill = dataclasses.replace(self._bill, items=items, participants=participants)
        logger.info("Removed participant %s (%s)", participant.name, participant.id)
        return participant

    def add_item(self, name: str = 'New Item', unit_price=0, quantity=1, assigned_to=()) -> LineItem:
        item = LineItem(
            id=new_id(),
            name=str(name) if name is not None else 'New Item',
            unit_price=to_amount(unit_price),
            quantity=to_quantity(quantity),
            assigned_to=self._clean_assignees(assigned_to),
        )
        self._bill = dataclasses.replace(self._bill, items=self._bill.items + (item,))
        logger.info("Added item %s (%s)", item.name, item.id)
        return item

    def update_item(self, item_id: str, updates: Dict[str, Any]) -> LineItem:
        """Edit the fields named in updates, keeping the item's id"""
        item = self._get_item(item_id)
        unknown = set(updates) - set(self.ITEM_FIELDS)
        if unknown:
            raise BillSplitError(f"Unknown item fields: {', '.join(sorted(unknown))}")

        changes = {}
        if 'name' in updates:
            changes['name'] = str(updates['name'] or '')
        if 'unit_price' in updates:
            changes['unit_price'] = to_amount(updates['unit_price'])
        if 'quantity' in updates:
            changes['quantity'] = to_quantity(updates['quantity'])
        if 'assigned_to' in updates:
            changes['assigned_to'] = self._clean_assignees(updates['assigned_to'])

        updated = dataclasses.replace(item, **changes)
        self._replace_item(updated)
        return updated

    def _replace_item(self, updated: LineItem):
        items = tuple(updated if i.id == updated.id else i for i in self._bill.items)
        self._bill = dataclasses.replace(self._bill, items=items)

    def remove_item(self, item_id: str) -> LineItem:
        item = self._get_item(item_id)
        self._bill = dataclasses.replace(
            self._bill, items=tuple(i for i in self._bill.items if i.id != item_id)
        )
        logger.info("Removed item %s (%s)", item.name, item.id)
        return item

    def clear_items(self):
        self._bill = dataclasses.replace(self._bill, items=())
        logger.info("Cleared all items")

    def toggle_assignment(self, item_id: str, participant_id: str) -> LineItem:
        """Assign a participant to an item, or unassign them if already assigned"""
        item = self._get_item(item_id)
        self._get_participant(participant_id)

        if participant_id in item.assigned_to:
            assigned_to = tuple(pid for pid in item.assigned_to if pid != participant_id)
        else:
            assigned_to = item.assigned_to + (participant_id,)

        updated = dataclasses.replace(item, assigned_to=assigned_to)
        self._replace_item(updated)
        return updated

    def set_charges(self, vat_rate=None, service_charge_rate=None, tip_amount=None) -> ChargeConfig:
        """Set any of the charge settings; None leaves a setting unchanged"""
        changes = {}
        if vat_rate is not None:
            changes['vat_rate'] = to_rate(vat_rate)
        if service_charge_rate is not None:
            changes['service_charge_rate'] = to_rate(service_charge_rate)
        if tip_amount is not None:
            changes['tip_amount'] = to_amount(tip_amount)

        charges = dataclasses.replace(self._bill.charges, **changes)
        self._bill = dataclasses.replace(self._bill, charges=charges)
        return charges

    def calculate_split(self) -> Dict[str, Any]:
        """Calculate the split for the current bill"""
        return calculate_split(self._bill, self.unassigned_policy, self.tolerance)
