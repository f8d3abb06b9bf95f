import json

import requests
from flask import current_app

from services.errors import ConfigurationError, NoDataError, UpstreamGenerationError

# Above this many campaigns only the fields below are sent to the model.
CAMPAIGN_REDUCTION_THRESHOLD = 10
REDUCED_CAMPAIGN_FIELDS = ('name', 'status', 'objective', 'spent', 'results', 'revenue', 'roi', 'ctr', 'cpc', 'cpa')

_BASE_PROMPT = "You are an expert marketing analytics AI assistant that specializes in analyzing Meta/Facebook ads data. "
SYSTEM_PROMPTS = {
    'campaigns': _BASE_PROMPT + (
        "You are analyzing campaign performance data to identify patterns, opportunities, and issues. "
        "Please provide clear, actionable insights that marketers can immediately apply to optimize their campaigns. "
        "Format your response with clear sections, bullet points where appropriate, and highlight key metrics."
    ),
    'creatives': _BASE_PROMPT + (
        "You are analyzing ad creative performance to identify which creative elements, themes, and approaches "
        "are performing best. Focus on identifying patterns across successful creatives and suggest specific improvements. "
        "Format your response with clear sections, bullet points where appropriate, and highlight key creative elements."
    ),
}
GENERIC_PROMPT = _BASE_PROMPT + (
    "Analyze the provided marketing data and identify key insights, patterns, and recommendations. "
    "Format your response with clear sections, bullet points where appropriate, and highlight key metrics."
)


def system_prompt_for(data_type):
    return SYSTEM_PROMPTS.get(data_type, GENERIC_PROMPT)


def prepare_data_points(data_type, data_points):
    """Projects large campaign lists onto REDUCED_CAMPAIGN_FIELDS; everything else is sent unchanged."""
    if data_type == 'campaigns' and len(data_points) > CAMPAIGN_REDUCTION_THRESHOLD:
        return [{key: point.get(key) for key in REDUCED_CAMPAIGN_FIELDS}
                for point in data_points if isinstance(point, dict)]
    return data_points


def build_messages(data_type, data_points, query):
    payload = json.dumps(prepare_data_points(data_type, data_points), default=str)
    return [
        {'role': 'system', 'content': system_prompt_for(data_type)},
        {'role': 'user', 'content': f"Here is the data to analyze: {payload}\n\nUser query: {query}"},
    ]


def analyze(data_type, data_points, query):
    """
    Asks the text-generation provider to analyze `data_points` in light of `query`.

    Args:
        data_type (str): 'campaigns', 'creatives' or anything else (generic prompt).
        data_points (list): Records to analyze. Must not be empty.
        query (str): The user's question.

    Returns:
        str: The generated insight text.

    Raises:
        NoDataError: If `data_points` is empty. Nothing is sent.
        ConfigurationError: If OPENAI_API_KEY is not set.
        UpstreamGenerationError: If the provider answers with a non-success status or cannot be reached.
    """
    if not data_points:
        raise NoDataError(f"No {data_type or 'data'} available for analysis.")

    config = current_app.config
    api_key = config.get('OPENAI_API_KEY')
    if not api_key:
        current_app.logger.critical("OPENAI_API_KEY is not configured; AI insights are unavailable.")
        raise ConfigurationError("OpenAI API key not configured.")

    body = {
        'model': config['OPENAI_MODEL'],
        'messages': build_messages(data_type, data_points, query),
        'temperature': 0.7,
    }
    current_app.logger.info(f"Requesting AI analysis of {len(data_points)} {data_type or 'data'} records with {config['OPENAI_MODEL']}.")

    try:
        response = requests.post(
            config['OPENAI_API_URL'],
            json=body,
            headers={'Authorization': f"Bearer {api_key}"},
            timeout=config['OPENAI_TIMEOUT'],
        )
    except requests.RequestException as e:
        current_app.logger.error(f"Text-generation request failed: {e}", exc_info=True)
        raise UpstreamGenerationError(details={'message': str(e)}) from e

    if not response.ok:
        try:
            details = response.json()
        except ValueError:
            details = {'message': response.text}
        current_app.logger.error(f"Text-generation provider returned {response.status_code}: {details}")
        raise UpstreamGenerationError(details=details)

    try:
        return response.json()['choices'][0]['message']['content']
    except (ValueError, KeyError, IndexError, TypeError) as e:
        current_app.logger.error(f"Unexpected text-generation response shape: {e}", exc_info=True)
        raise UpstreamGenerationError("The text-generation API returned an unexpected response.") from e
