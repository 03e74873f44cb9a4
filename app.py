from decimal import Decimal
import logging
import os

from flask import Flask, request, jsonify, current_app

from config import Config
from decorators import json_body_required
from models import Bill, ChargeConfig, LineItem, Participant, new_id, to_amount, to_quantity
from bill_splitting_logic import (
    BillSplitter,
    BillSplitError,
    DuplicateParticipant,
    ItemNotFound,
    ParticipantNotFound,
    UnassignedPolicy,
    calculate_split,
    round_currency,
)


app = Flask(__name__)
app.config.from_object(Config)


def _unassigned_policy(value) -> UnassignedPolicy:
    try:
        return UnassignedPolicy(value)
    except ValueError:
        raise BillSplitError(f"Unknown unassigned item policy: {value}")


def init_bill_splitter(flask_app):
    """Start a fresh session bill from the app's configured defaults"""
    charges = ChargeConfig.from_raw(
        vat_rate=flask_app.config['DEFAULT_VAT_RATE'],
        service_charge_rate=flask_app.config['DEFAULT_SERVICE_CHARGE_RATE'],
        tip_amount=flask_app.config['DEFAULT_TIP_AMOUNT'],
    )
    splitter = BillSplitter(
        charges=charges,
        unassigned_policy=_unassigned_policy(flask_app.config['UNASSIGNED_ITEM_POLICY']),
        tolerance=Decimal(str(flask_app.config['RECONCILIATION_TOLERANCE'])),
    )
    flask_app.extensions['bill_splitter'] = splitter
    flask_app.logger.setLevel(flask_app.config['LOG_LEVEL'])
    logging.getLogger('bill_splitting_logic').setLevel(flask_app.config['LOG_LEVEL'])
    return splitter


def get_splitter() -> BillSplitter:
    return current_app.extensions['bill_splitter']


init_bill_splitter(app)


# --------- Serialization ---------

def _money(amount: Decimal) -> float:
    return float(round_currency(amount))


def serialize_split(result):
    summary = result['summary']
    return {
        'summary': {
            'subtotal': _money(summary['subtotal']),
            'vat_rate': float(summary['vat_rate']),
            'vat_amount': _money(summary['vat_amount']),
            'service_charge_rate': float(summary['service_charge_rate']),
            'service_charge_amount': _money(summary['service_charge_amount']),
            'tip_amount': _money(summary['tip_amount']),
            'total': _money(summary['total']),
        },
        'breakdown': {
            name: {'item_total': _money(entry['item_total']), 'share': _money(entry['share'])}
            for name, entry in result['breakdown'].items()
        },
        'reconciliation': {
            'is_match': result['reconciliation']['is_match'],
            'discrepancy': _money(result['reconciliation']['discrepancy']),
        },
    }


def _bill_from_payload(data) -> Bill:
    """Build a bill snapshot from a raw request payload, sanitising every value"""
    raw_participants = data.get('participants') or []
    raw_items = data.get('items') or []
    if not isinstance(raw_participants, list) or not isinstance(raw_items, list):
        raise BillSplitError("Participants and items must be lists")

    participants = []
    for entry in raw_participants:
        if isinstance(entry, dict):
            name = str(entry.get('name') or '').strip()
            participant_id = str(entry.get('id') or name)
        else:
            name = str(entry).strip()
            participant_id = name
        if not name:
            raise BillSplitError("Participant name is required")
        if any(p.name == name or p.id == participant_id for p in participants):
            raise DuplicateParticipant(f"Participant {name} already exists")
        participants.append(Participant(id=participant_id, name=name))

    items = []
    for entry in raw_items:
        if not isinstance(entry, dict):
            raise BillSplitError("Each item must be an object")
        assigned_to = entry.get('assigned_to') or []
        if not isinstance(assigned_to, list):
            raise BillSplitError("assigned_to must be a list")
        items.append(LineItem(
            id=str(entry.get('id') or new_id()),
            name=str(entry.get('name') or 'New Item'),
            unit_price=to_amount(entry.get('unit_price', entry.get('price'))),
            quantity=to_quantity(entry.get('quantity', 1)),
            assigned_to=tuple(dict.fromkeys(str(pid) for pid in assigned_to)),
        ))

    charges = ChargeConfig.from_raw(
        vat_rate=data.get('vat_rate'),
        service_charge_rate=data.get('service_charge_rate'),
        tip_amount=data.get('tip_amount'),
    )
    return Bill(items=tuple(items), participants=tuple(participants), charges=charges)


# --------- Error handlers ---------

@app.errorhandler(BillSplitError)
def handle_bill_split_error(error):
    if isinstance(error, (ItemNotFound, ParticipantNotFound)):
        status = 404
    elif isinstance(error, DuplicateParticipant):
        status = 409
    else:
        status = 400
    app.logger.info("Rejected request to %s: %s", request.path, error)
    return jsonify({'success': False, 'error': str(error)}), status


# --------- Routes ---------

@app.route('/api/bill', methods=['GET'])
def get_bill():
    """Current items, participants, charges and the resulting split"""
    splitter = get_splitter()
    bill = splitter.snapshot()
    return jsonify({
        'success': True,
        'bill': bill.to_dict(),
        'unassigned_policy': splitter.unassigned_policy.value,
        'split': serialize_split(splitter.calculate_split()),
    }), 200


@app.route('/api/participants', methods=['POST'])
@json_body_required
def add_participant():
    participant = get_splitter().add_participant(request.get_json().get('name'))
    return jsonify({'success': True, 'participant': participant.to_dict()}), 201


@app.route('/api/participants/<participant_id>', methods=['DELETE'])
def remove_participant(participant_id):
    """Remove a participant and unassign them from every item"""
    splitter = get_splitter()
    participant = splitter.remove_participant(participant_id)
    return jsonify({
        'success': True,
        'removed': participant.to_dict(),
        'split': serialize_split(splitter.calculate_split()),
    }), 200


@app.route('/api/items', methods=['POST'])
@json_body_required
def add_item():
    data = request.get_json()
    assigned_to = data.get('assigned_to') or []
    if not isinstance(assigned_to, list):
        raise BillSplitError("assigned_to must be a list")

    item = get_splitter().add_item(
        name=data.get('name', 'New Item'),
        unit_price=data.get('unit_price', 0),
        quantity=data.get('quantity', 1),
        assigned_to=assigned_to,
    )
    return jsonify({'success': True, 'item': item.to_dict()}), 201


@app.route('/api/items/<item_id>', methods=['PATCH'])
@json_body_required
def update_item(item_id):
    data = request.get_json()
    if 'assigned_to' in data and not isinstance(data['assigned_to'], list):
        raise BillSplitError("assigned_to must be a list")

    item = get_splitter().update_item(item_id, data)
    return jsonify({'success': True, 'item': item.to_dict()}), 200


@app.route('/api/items/<item_id>', methods=['DELETE'])
def remove_item(item_id):
    item = get_splitter().remove_item(item_id)
    return jsonify({'success': True, 'removed': item.to_dict()}), 200


@app.route('/api/items', methods=['DELETE'])
def clear_items():
    get_splitter().clear_items()
    return jsonify({'success': True, 'items': []}), 200


@app.route('/api/items/<item_id>/assignees/<participant_id>', methods=['POST'])
def toggle_assignment(item_id, participant_id):
    """Assign the participant to the item, or unassign them if already assigned"""
    item = get_splitter().toggle_assignment(item_id, participant_id)
    return jsonify({'success': True, 'item': item.to_dict()}), 200


@app.route('/api/charges', methods=['PUT'])
@json_body_required
def set_charges():
    data = request.get_json()
    charges = get_splitter().set_charges(
        vat_rate=data.get('vat_rate'),
        service_charge_rate=data.get('service_charge_rate'),
        tip_amount=data.get('tip_amount'),
    )
    return jsonify({'success': True, 'charges': charges.to_dict()}), 200


@app.route('/api/split', methods=['GET'])
def get_split():
    return jsonify({'success': True, 'split': serialize_split(get_splitter().calculate_split())}), 200


@app.route('/api/split-bill', methods=['POST'])
@json_body_required
def split_bill():
    """Split a bill sent in full with the request, without touching the session bill"""
    data = request.get_json()
    bill = _bill_from_payload(data)
    policy = _unassigned_policy(data.get('unassigned_policy') or app.config['UNASSIGNED_ITEM_POLICY'])
    tolerance = Decimal(str(app.config['RECONCILIATION_TOLERANCE']))

    result = calculate_split(bill, policy, tolerance)
    return jsonify({'success': True, 'split_result': serialize_split(result)}), 200


# Run the app
if __name__ == "__main__":
    logging.basicConfig(level=app.config['LOG_LEVEL'])
    app.run(debug=app.config['DEBUG'], host='0.0.0.0', port=int(os.getenv('PORT', '5000')))
