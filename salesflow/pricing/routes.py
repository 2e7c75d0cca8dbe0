# salesflow/pricing/routes.py

from flask import Blueprint, g, jsonify, request

from salesflow.auth.routes import login_required
from salesflow.orchestrator import WorkflowOrchestrator

bp = Blueprint('pricing', __name__)


@bp.route('/', methods=['GET'])
@login_required
def list_pricing():
    flow = WorkflowOrchestrator(owner_id=g.profile.id)
    items, source = flow.fetch_pricing(request.args.get('category'))
    return jsonify(items=items, source=source)
