from flask import Blueprint, jsonify
from flask_login import login_required

from services import insight_gateway
from services.errors import BadRequestError
from utils.decorators import json_body

# Blueprint for AI-generated insights about campaign and creative data.
ai_insights_bp = Blueprint('ai_insights', __name__, url_prefix='/api/ai-insights')


@ai_insights_bp.route('/analyze', methods=['POST'])
@login_required
@json_body()
def analyze(body):
    """
    Sends the client's data points and question to the text-generation provider.

    Request JSON: {dataType: 'campaigns'|'creatives'|..., dataPoints: [...], query: str}
    Response JSON: {insight: str}
    """
    data_points = body.get('dataPoints') or []
    if not isinstance(data_points, list):
        raise BadRequestError("'dataPoints' must be a list.")
    query = body.get('query')
    if not isinstance(query, str) or not query.strip():
        raise BadRequestError("'query' is required.")
    insight = insight_gateway.analyze(body.get('dataType'), data_points, query)
    return jsonify({'insight': insight})
