# salesflow/sessions/routes.py

from flask import Blueprint, g, jsonify, request

from salesflow.auth.routes import login_required
from salesflow.errors import ValidationFailed
from salesflow.orchestrator import WorkflowOrchestrator

bp = Blueprint('sessions', __name__)


def _orchestrator():
    return WorkflowOrchestrator(owner_id=g.profile.id)


def _payload():
    return request.get_json(silent=True) or {}


def _upload():
    f = request.files.get('file')
    if f is None or not f.filename:
        raise ValidationFailed('No file provided')
    return f.read(), f.mimetype


@bp.route('/', methods=['GET'])
@login_required
def list_sessions():
    sessions = _orchestrator().list_sessions()
    return jsonify(sessions=[s.to_dict() for s in sessions])


@bp.route('/', methods=['POST'])
@login_required
def create_session():
    flow = _orchestrator()
    sales_session = flow.create_session()
    return jsonify(flow.describe(sales_session.id)), 201


@bp.route('/<session_id>', methods=['GET'])
@login_required
def get_session(session_id):
    return jsonify(_orchestrator().describe(session_id))


@bp.route('/<session_id>', methods=['PATCH'])
@login_required
def update_session(session_id):
    flow = _orchestrator()
    flow.update_session(session_id, _payload())
    return jsonify(flow.describe(session_id))


@bp.route('/<session_id>', methods=['DELETE'])
@login_required
def delete_session(session_id):
    _orchestrator().delete_session(session_id)
    return jsonify(deleted=session_id)


@bp.route('/<session_id>/stage', methods=['POST'])
@login_required
def navigate(session_id):
    stage = _payload().get('stage')
    if stage is None:
        raise ValidationFailed('stage is required')
    flow = _orchestrator()
    flow.navigate(session_id, stage)
    return jsonify(flow.describe(session_id))


@bp.route('/<session_id>/photo', methods=['POST'])
@login_required
def upload_photo(session_id):
    data, content_type = _upload()
    flow = _orchestrator()
    flow.upload_photo(session_id, data, content_type)
    return jsonify(flow.describe(session_id))


@bp.route('/<session_id>/photo', methods=['DELETE'])
@login_required
def remove_photo(session_id):
    flow = _orchestrator()
    flow.remove_photo(session_id)
    return jsonify(flow.describe(session_id))


@bp.route('/<session_id>/mockups', methods=['GET'])
@login_required
def list_mockups(session_id):
    mockups = _orchestrator().list_mockups(session_id)
    return jsonify(mockups=[m.to_dict() for m in mockups])


@bp.route('/<session_id>/mockups', methods=['POST'])
@login_required
def generate_mockup(session_id):
    data = _payload()
    flow = _orchestrator()
    mockup = flow.generate_mockup(
        session_id,
        prompt=data.get('prompt'),
        custom_instructions=data.get('custom_instructions'),
    )
    return jsonify(mockup=mockup.to_dict(), **flow.describe(session_id)), 201


@bp.route('/<session_id>/mockups/<mockup_id>/final', methods=['POST'])
@login_required
def mark_final(session_id, mockup_id):
    flow = _orchestrator()
    mockup = flow.mark_mockup_final(session_id, mockup_id)
    return jsonify(mockup=mockup.to_dict(), **flow.describe(session_id))


@bp.route('/<session_id>/estimate', methods=['POST'])
@login_required
def save_estimate(session_id):
    data = _payload()
    flow = _orchestrator()
    flow.save_estimate(
        session_id,
        data.get('items'),
        discount_percent=data.get('discount_percent', 0),
        tax_percent=data.get('tax_percent', 0),
    )
    return jsonify(flow.describe(session_id))


@bp.route('/<session_id>/contract', methods=['POST'])
@login_required
def generate_contract(session_id):
    flow = _orchestrator()
    flow.generate_contract(session_id, signature_data=_payload().get('signature_data'))
    return jsonify(flow.describe(session_id))


@bp.route('/<session_id>/contract/upload', methods=['POST'])
@login_required
def upload_contract(session_id):
    data, content_type = _upload()
    flow = _orchestrator()
    flow.upload_signed_contract(session_id, data, content_type)
    return jsonify(flow.describe(session_id))


@bp.route('/<session_id>/complete', methods=['POST'])
@login_required
def complete(session_id):
    flow = _orchestrator()
    flow.complete_session(session_id)
    return jsonify(flow.describe(session_id))


@bp.route('/<session_id>/notify', methods=['POST'])
@login_required
def notify(session_id):
    data = _payload()
    kind = data.get('kind') or data.get('type')
    if not kind:
        raise ValidationFailed('kind is required')
    message_id = _orchestrator().send_notification(
        kind, session_id, recipient_email=data.get('recipient_email')
    )
    return jsonify(sent=True, kind=kind, message_id=message_id)
