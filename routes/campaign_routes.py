"""
Campaign API routes - JSON surface over the campaign orchestrator
"""

from flask import Blueprint, request, jsonify, current_app
from services.common.result import Result
import logging

logger = logging.getLogger(__name__)

campaign_api_bp = Blueprint('campaign_api', __name__)

ERROR_STATUS = {
    'VALIDATION_ERROR': 400,
    'NOT_FOUND': 404,
    'STATE_CONFLICT': 409,
    'IN_FLIGHT': 409,
    'RECORD_CONFLICT': 409,
    'BUSINESS_ERROR': 502,
    'TRANSPORT_ERROR': 504,
    'CONFIGURATION_ERROR': 500,
}
ENVIRONMENT_NAMES = ('sandbox', 'production', 'dev', 'prod')


def _orchestrator():
    return current_app.services.get('campaign_orchestrator')


def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _env_override():
    """Explicit per-call environment override from the query string or body"""
    env = request.args.get('env') or _json_body().get('env')
    if env is None or env == '':
        return None, None
    if str(env).lower() not in ENVIRONMENT_NAMES:
        return None, (jsonify({'error': f'Unknown environment: {env}', 'code': 'VALIDATION_ERROR'}), 400)
    return str(env).lower(), None


def _respond(result: Result, success_status: int = 200):
    """Map a service Result onto an HTTP response"""
    if result.is_success:
        body = {'success': True, 'data': result.data}
        if result.metadata:
            body['meta'] = result.metadata
        return jsonify(body), success_status

    status = ERROR_STATUS.get(result.error_code, 500)
    body = {'success': False, 'error': result.error, 'code': result.error_code}
    if result.metadata:
        body['details'] = result.metadata
    return jsonify(body), status


@campaign_api_bp.route('/api/campaigns', methods=['POST'])
def create_campaign():
    """Create a campaign and register it at the Gateway"""
    env, error = _env_override()
    if error:
        return error
    data = _json_body()
    result = _orchestrator().create_campaign(data, user_id=data.get('user_id'), env_override=env)
    return _respond(result, success_status=201)


@campaign_api_bp.route('/api/campaigns/<campaign_id>', methods=['GET'])
def get_campaign(campaign_id):
    return _respond(_orchestrator().get_campaign(campaign_id))


@campaign_api_bp.route('/api/campaigns/<campaign_id>', methods=['DELETE'])
def delete_campaign(campaign_id):
    return _respond(_orchestrator().delete_campaign(campaign_id))


@campaign_api_bp.route('/api/campaigns/<campaign_id>/targeting', methods=['PUT'])
def update_targeting(campaign_id):
    return _respond(_orchestrator().update_targeting(campaign_id, _json_body().get('targeting') or {}))


@campaign_api_bp.route('/api/campaigns/<campaign_id>/register', methods=['POST'])
def register_campaign(campaign_id):
    """Manual retry of a failed registration"""
    confirm = bool(_json_body().get('confirm_unregistered', False))
    return _respond(_orchestrator().register_campaign(campaign_id, confirm_unregistered=confirm))


@campaign_api_bp.route('/api/campaigns/<campaign_id>/submit', methods=['POST'])
def submit_campaign(campaign_id):
    confirm = bool(_json_body().get('confirm_unregistered', False))
    return _respond(_orchestrator().submit_campaign(campaign_id, confirm_unregistered=confirm))


@campaign_api_bp.route('/api/campaigns/<campaign_id>/test-send', methods=['POST'])
def send_test(campaign_id):
    numbers = _json_body().get('numbers') or _json_body().get('mdn')
    return _respond(_orchestrator().send_test(campaign_id, numbers))


@campaign_api_bp.route('/api/campaigns/<campaign_id>/cancel', methods=['POST'])
def cancel_campaign(campaign_id):
    return _respond(_orchestrator().cancel_campaign(campaign_id))


@campaign_api_bp.route('/api/campaigns/<campaign_id>/stop', methods=['POST'])
def stop_campaign(campaign_id):
    return _respond(_orchestrator().stop_campaign(campaign_id))


@campaign_api_bp.route('/api/campaigns/<campaign_id>/refresh', methods=['POST'])
def refresh_campaign(campaign_id):
    """Reconciling GET against the Gateway"""
    remote_id = _json_body().get('remote_id')
    return _respond(_orchestrator().refresh_status(campaign_id, remote_id=remote_id))


@campaign_api_bp.route('/api/campaigns/<campaign_id>/stats', methods=['GET'])
def campaign_stats(campaign_id):
    return _respond(_orchestrator().get_stats(campaign_id))


@campaign_api_bp.route('/api/targeting/preview', methods=['POST'])
def preview_targeting():
    """Compile targeting and optionally estimate the audience"""
    env, error = _env_override()
    if error:
        return error
    data = _json_body()
    result = _orchestrator().preview_targeting(
        data.get('targeting') or {},
        estimate=bool(data.get('estimate', False)),
        env_override=env,
    )
    return _respond(result)


@campaign_api_bp.route('/api/gateway/meta/<meta_type>', methods=['GET'])
def gateway_meta(meta_type):
    env, error = _env_override()
    if error:
        return error
    body = {key: request.args[key] for key in ('cateid', 'addr') if request.args.get(key)}
    return _respond(_orchestrator().fetch_meta(meta_type, body=body, env_override=env))
