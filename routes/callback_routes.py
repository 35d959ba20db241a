"""
Inbound Gateway callbacks
"""

from flask import Blueprint, jsonify, request, current_app
import logging

logger = logging.getLogger(__name__)

callback_bp = Blueprint('gateway_callbacks', __name__)


@callback_bp.route('/api/gateway/callback/state', methods=['POST'])
def campaign_state_callback():
    """Campaign state change notification from the Gateway.

    The reconciliation service decides both status and body; only a 500 makes
    the Gateway retry.
    """
    reconciliation_service = current_app.services.get('callback_reconciliation')
    payload = request.get_json(silent=True)

    response = reconciliation_service.handle_callback(
        headers=request.headers,
        payload=payload,
        query_args=request.args,
        remote_addr=request.remote_addr,
    )
    return jsonify(response.body), response.status_code
