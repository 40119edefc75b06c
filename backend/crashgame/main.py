from flask import Blueprint, jsonify
from crashgame import get_engine

main = Blueprint('main', __name__)


@main.route('/')
def index():
    return jsonify({'message': 'Crash game WebSocket server running', 'websocket_namespace': '/ws'})


@main.route('/health')
def health():
    snapshot = get_engine().snapshot()
    return jsonify({'status': 'healthy', 'phase': snapshot['phase'], 'round_id': snapshot['roundId']})
