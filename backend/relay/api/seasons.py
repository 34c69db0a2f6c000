from flask import Blueprint, jsonify, request

from relay import db
from relay.api import require_int, respond
from relay.models import Season
from relay.services import get_seasons
from relay.services.seasons import CONFIG_FIELDS

seasons = Blueprint('seasons', __name__)


@seasons.route('', methods=['POST'])
def create_season():
    """Creates a season and opens it for joining."""
    data = request.get_json(silent=True) or {}
    creator_id = require_int(data, 'creator_id')
    if creator_id is None:
        return jsonify({'error': 'invalid_content', 'message': 'creator_id is required'}), 400
    options = {k: data[k] for k in CONFIG_FIELDS if k in data}
    service = get_seasons()
    result = service.create_season(creator_id, data.get('name') or '', **options)
    if not result.ok:
        return respond(result)
    return respond(service.open_season(result.season.id), 201)


@seasons.route('/<int:season_id>', methods=['GET'])
def show_season(season_id):
    season = db.session.get(Season, season_id)
    if season is None:
        return jsonify({'error': 'not_found', 'message': f'Season {season_id} not found'}), 404
    return jsonify(season.to_dict())


@seasons.route('/<int:season_id>/join', methods=['POST'])
def join_season(season_id):
    player_id = require_int(request.get_json(silent=True), 'player_id')
    if player_id is None:
        return jsonify({'error': 'invalid_content', 'message': 'player_id is required'}), 400
    return respond(get_seasons().join_season(season_id, player_id))


@seasons.route('/<int:season_id>/activate', methods=['POST'])
def activate_season(season_id):
    return respond(get_seasons().activate_season(season_id, trigger='manual'))


@seasons.route('/<int:season_id>/terminate', methods=['POST'])
def terminate_season(season_id):
    return respond(get_seasons().terminate_season(season_id))
