from flask import Blueprint, jsonify, request

from relay.api import respond
from relay.services import get_offering

games = Blueprint('games', __name__)


@games.route('/<int:game_id>', methods=['GET'])
def game_state(game_id):
    state = get_offering().game_state(game_id)
    if state is None:
        return jsonify({'error': 'not_found', 'message': f'Game {game_id} not found'}), 404
    return jsonify(state)


@games.route('/<int:game_id>/offer', methods=['POST'])
def offer_next_turn(game_id):
    data = request.get_json(silent=True) or {}
    return respond(get_offering().offer_next_turn(game_id, data.get('trigger') or 'manual'))
