from flask import Blueprint, jsonify, request
from crashgame import get_engine
from crashgame.models import CrashRound


game_api = Blueprint('game_api', __name__)

MAX_HISTORY = 100


@game_api.route('/state', methods=['GET'])
def get_game_state():
    return jsonify(get_engine().snapshot())


@game_api.route('/multiplier', methods=['GET'])
def get_multiplier():
    return jsonify({'multiplier': get_engine().current_multiplier()})


@game_api.route('/history', methods=['GET'])
def get_history():
    try:
        limit = int(request.args.get('limit', 20))
    except (TypeError, ValueError):
        return jsonify({'error': 'limit must be an integer'}), 400
    if limit < 1 or limit > MAX_HISTORY:
        return jsonify({'error': f'limit must be between 1 and {MAX_HISTORY}'}), 400

    rows = CrashRound.query.order_by(CrashRound.id.desc()).limit(limit).all()
    return jsonify({'rounds': [row.to_dict() for row in rows]})
