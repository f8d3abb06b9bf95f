from datetime import date, timedelta # For date calculations.
from urllib.parse import urlparse

# Number of days covered by each relative time range, counted back from today.
# 'yesterday' is handled separately because it is a single closed day.
TIME_RANGE_DAYS = {
    'today': 0,
    'last_7_days': 7,
    'last_30_days': 30,
    'last_90_days': 90,
}
DEFAULT_TIME_RANGE = 'last_30_days'


def resolve_time_range(time_range, today=None):
    """
    Maps a time-range keyword to the concrete (since, until) dates sent to the Meta API.

    Supported keywords are 'today', 'yesterday', 'last_7_days', 'last_30_days' and
    'last_90_days'. The 'last_N_days' ranges end today and start N days earlier.
    Unrecognized or missing values fall back to 'last_30_days' instead of failing,
    since the keyword usually comes straight from a UI selector.

    Args:
        time_range (str or None): The time-range keyword.
        today (date, optional): Reference date, defaults to date.today(). Mainly for tests.

    Returns:
        tuple: (since, until) as datetime.date objects.
    """
    today = today or date.today()
    if time_range == 'yesterday':
        yesterday = today - timedelta(days=1)
        return yesterday, yesterday
    days = TIME_RANGE_DAYS.get(time_range, TIME_RANGE_DAYS[DEFAULT_TIME_RANGE])
    return today - timedelta(days=days), today


def build_redirect_uri(origin, default_origin, path='/meta-callback'):
    """
    Builds the OAuth redirect URI from the request's declared origin.

    Meta requires the exact same redirect URI at authorization and at token
    exchange, so the frontend echoes back the value computed here.

    Args:
        origin (str or None): Value of the request's Origin header.
        default_origin (str): Fallback origin when the header is absent or not http(s).
        path (str): Callback path appended to the origin.
    """
    candidate = (origin or '').strip().rstrip('/')
    parsed = urlparse(candidate)
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        candidate = default_origin.rstrip('/')
    return f"{candidate}{path}"


def normalize_ad_account_id(ad_account_id):
    """Meta Ads API requires ad account IDs with the 'act_' prefix; accept both forms."""
    if not ad_account_id:
        return None
    ad_account_id = str(ad_account_id).strip()
    return ad_account_id if ad_account_id.startswith('act_') else f"act_{ad_account_id}"
