from flask import jsonify

from relay.services.turns.results import ErrorKind

STATUS_CODES = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_TRANSITION: 409,
    ErrorKind.WRONG_PLAYER: 403,
    ErrorKind.INVALID_CONTENT: 400,
    ErrorKind.NO_ELIGIBLE_PLAYERS: 409,
    ErrorKind.INACTIVE: 409,
}


def respond(result, success_code=200):
    """Render a service Result as JSON with a matching status code."""
    if result.ok:
        return jsonify(result.to_dict()), success_code
    return jsonify({'error': result.error.value, 'message': result.message}), STATUS_CODES.get(result.error, 400)


def require_int(data, key):
    value = (data or {}).get(key)
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
