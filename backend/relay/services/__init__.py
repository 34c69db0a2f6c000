from flask import current_app


def get_offering():
    return current_app.extensions['turn_offering']


def get_seasons():
    return current_app.extensions['season_service']


def get_scheduler():
    return current_app.extensions['timeout_scheduler']
