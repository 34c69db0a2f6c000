from flask_socketio import emit, join_room, leave_room

from relay import socketio
from relay.services.turns.notifications import NAMESPACE, player_room


def handle_connect():
    emit('connected', {'message': f'Connected to {NAMESPACE}'})


def _room_from(data):
    player_id = (data or {}).get('player_id')
    try:
        return player_room(int(player_id))
    except (TypeError, ValueError):
        emit('error', {'message': 'player_id is required'})
        return None


def handle_join_player(data):
    room = _room_from(data)
    if room is None:
        return
    join_room(room)
    emit('joined', {'room': room})


def handle_leave_player(data):
    room = _room_from(data)
    if room is None:
        return
    leave_room(room)
    emit('left', {'room': room})


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers on '/ws'.

    When testing is True, also mirror them on the default namespace '/'
    for the test harness.
    """
    namespaces = [NAMESPACE, '/'] if testing else [NAMESPACE]
    for namespace in namespaces:
        socketio.on_event('connect', handle_connect, namespace=namespace)
        socketio.on_event('join_player', handle_join_player, namespace=namespace)
        socketio.on_event('leave_player', handle_leave_player, namespace=namespace)
        socketio.on_event('ping', handle_ping, namespace=namespace)
