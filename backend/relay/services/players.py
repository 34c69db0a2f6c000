import logging
from typing import Optional

from relay import db
from relay.models import Player, utcnow
from relay.services import get_offering

logger = logging.getLogger(__name__)


def get_or_create_player(external_id: str, name: Optional[str] = None) -> Player:
    """Players come into existence on their first interaction."""
    player = Player.query.filter_by(external_id=external_id).first()
    if player is None:
        player = Player(external_id=external_id, name=name or external_id)
        db.session.add(player)
        db.session.commit()
        logger.info(f"[player-created] player={player.id} external_id={external_id}")
    elif name and player.name != name:
        player.name = name
        db.session.commit()
    return player


def set_banned(player_id: int, banned: bool) -> Optional[Player]:
    player = db.session.get(Player, player_id)
    if player is None:
        return None
    player.banned_at = utcnow() if banned else None
    db.session.commit()
    logger.info(f"[player-{'banned' if banned else 'unbanned'}] player={player.id}")
    get_offering().reconcile_player(player)
    return player


def ban_player(player_id: int) -> Optional[Player]:
    return set_banned(player_id, True)


def unban_player(player_id: int) -> Optional[Player]:
    return set_banned(player_id, False)
