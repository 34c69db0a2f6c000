from flask import Blueprint, jsonify, request

from relay import db
from relay.models import Player
from relay.services.players import ban_player, get_or_create_player, unban_player

players = Blueprint('players', __name__)


@players.route('', methods=['POST'])
def upsert_player():
    data = request.get_json(silent=True) or {}
    external_id = str(data.get('external_id') or '').strip()
    if not external_id:
        return jsonify({'error': 'invalid_content', 'message': 'external_id is required'}), 400
    player = get_or_create_player(external_id, data.get('name'))
    return jsonify(player.to_dict()), 200


@players.route('/<int:player_id>', methods=['GET'])
def show_player(player_id):
    player = db.session.get(Player, player_id)
    if player is None:
        return jsonify({'error': 'not_found', 'message': f'Player {player_id} not found'}), 404
    return jsonify(player.to_dict())


@players.route('/<int:player_id>/ban', methods=['POST'])
def ban(player_id):
    player = ban_player(player_id)
    if player is None:
        return jsonify({'error': 'not_found', 'message': f'Player {player_id} not found'}), 404
    return jsonify(player.to_dict())


@players.route('/<int:player_id>/unban', methods=['POST'])
def unban(player_id):
    player = unban_player(player_id)
    if player is None:
        return jsonify({'error': 'not_found', 'message': f'Player {player_id} not found'}), 404
    return jsonify(player.to_dict())
