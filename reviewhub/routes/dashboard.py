from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user

from reviewhub.utils.account_state import load_account_state
from reviewhub.utils.analytics import get_review_analytics

dash_bp = Blueprint('dashboard', __name__)


@dash_bp.route('/', methods=['GET'])
@login_required
def dashboard():
    state = load_account_state(current_user, route=request.args.get('route'))

    analytics = None
    if state.business is not None:
        analytics = get_review_analytics(state.business.id)

    payload = state.to_dict()
    payload['analytics'] = analytics
    return jsonify(payload)
