from flask import Blueprint, jsonify, request

from relay import db
from relay.api import require_int, respond
from relay.models import Turn
from relay.services import get_offering

turns = Blueprint('turns', __name__)


def _player_id():
    return require_int(request.get_json(silent=True), 'player_id')


def _missing_player():
    return jsonify({'error': 'invalid_content', 'message': 'player_id is required'}), 400


@turns.route('/<int:turn_id>', methods=['GET'])
def show_turn(turn_id):
    turn = db.session.get(Turn, turn_id)
    if turn is None:
        return jsonify({'error': 'not_found', 'message': f'Turn {turn_id} not found'}), 404
    return jsonify(turn.to_dict())


@turns.route('/<int:turn_id>/claim', methods=['POST'])
def claim_turn(turn_id):
    player_id = _player_id()
    if player_id is None:
        return _missing_player()
    return respond(get_offering().claim_turn(turn_id, player_id))


@turns.route('/<int:turn_id>/submit', methods=['POST'])
def submit_turn(turn_id):
    data = request.get_json(silent=True) or {}
    player_id = _player_id()
    if player_id is None:
        return _missing_player()
    return respond(get_offering().submit_turn(
        turn_id, player_id,
        text_content=data.get('text_content'),
        image_url=data.get('image_url'),
    ))


@turns.route('/<int:turn_id>/dismiss', methods=['POST'])
def dismiss_offer(turn_id):
    player_id = _player_id()
    if player_id is None:
        return _missing_player()
    return respond(get_offering().dismiss_offer(turn_id, player_id))


@turns.route('/<int:turn_id>/skip', methods=['POST'])
def skip_turn(turn_id):
    return respond(get_offering().skip_turn(turn_id))
