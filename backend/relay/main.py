from flask import Blueprint, jsonify
from sqlalchemy import text

from relay import db
from relay.services import get_scheduler

main = Blueprint('main', __name__)


@main.route('/')
def index():
    return jsonify({'service': 'turn-relay', 'status': 'ok'})


@main.route('/health')
def health():
    db.session.execute(text('SELECT 1'))
    scheduler = get_scheduler()
    return jsonify({'status': 'ok', 'overdue_timers': scheduler.overdue_count()})
