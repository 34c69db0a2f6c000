from relay import socketio

NAMESPACE = '/ws'


def player_room(player_id: int) -> str:
    return f"player:{player_id}"


class SocketIONotifier:
    """Delivers orchestration messages to a player's Socket.IO room.

    The chat bot front end keeps one connection per player and joins
    ``player:<id>`` with the ``join_player`` event.
    """

    def notify(self, player_id: int, message: dict) -> None:
        socketio.emit(message.get('type', 'notification'), message,
                      to=player_room(player_id), namespace=NAMESPACE)
