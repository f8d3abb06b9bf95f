"""
Ad-data aggregation for a user's Meta ad account.

Raw Graph API payloads are mapped at the boundary onto GraphCreative, GraphAd
and AdInsight records that tolerate any missing field. Ad-level insights are
then joined onto their parent creative, themed and rolled up into the
CreativeRecord, ThemeRecord and campaign views served by the API.
"""
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import AdAccountCache, CreativeTag
from services import theme_classifier, token_store
from services.errors import AdAccountAccessError, BadRequestError, MissingAdAccountError, UpstreamFetchError
from services.meta_graph import GraphAPIError, get_graph_client
from utils.helpers import normalize_ad_account_id, resolve_time_range

PURCHASE_ACTION_TYPES = ('purchase', 'offsite_conversion.fb_pixel_purchase')
LEAD_ACTION_TYPES = ('lead', 'offsite_conversion.fb_pixel_lead')

# Aggregate creative status: lower rank wins.
STATUS_RANK = {'active': 0, 'paused': 1, 'archived': 2}
AD_STATUS_MAP = {
    'ACTIVE': 'active',
    'PAUSED': 'paused',
    'CAMPAIGN_PAUSED': 'paused',
    'ADSET_PAUSED': 'paused',
    'ARCHIVED': 'archived',
    'DELETED': 'archived',
}

# Score given to creatives with neither revenue nor a notable CTR.
DEFAULT_PERFORMANCE_SCORE = 1.0
MAX_THEME_EXAMPLES = 10

# Meta appends " YYYY-MM-DD-<32 hex>" to generated creative names.
_GENERATED_NAME_SUFFIX = re.compile(r'\s\d{4}-\d{2}-\d{2}-[0-9a-f]{32}$')


def _to_int(value):
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def _to_float(value):
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _as_dict(value):
    return value if isinstance(value, dict) else {}


def _as_list(value):
    return value if isinstance(value, list) else []


def _parse_graph_time(value):
    """Parses Graph timestamps such as '2024-03-01T09:00:00-0800' into aware UTC datetimes."""
    if not value or not isinstance(value, str):
        return None
    for fmt in ('%Y-%m-%dT%H:%M:%S%z', '%Y-%m-%d'):
        try:
            parsed = datetime.strptime(value, fmt)
            break
        except ValueError:
            continue
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _find_action_value(entries, action_types):
    """Value of the first entry whose action_type is one of `action_types`, or None."""
    for entry in entries:
        if isinstance(entry, dict) and entry.get('action_type') in action_types:
            return _to_float(entry.get('value'))
    return None


def _purchase_then_lead(entries):
    value = _find_action_value(entries, PURCHASE_ACTION_TYPES)
    if value is None:
        value = _find_action_value(entries, LEAD_ACTION_TYPES)
    return value


def clean_creative_name(name):
    """Strips the date/hash suffix Meta adds to auto-generated creative names."""
    if not name:
        return ''
    return _GENERATED_NAME_SUFFIX.sub('', name)


# --- Boundary records -------------------------------------------------------

@dataclass
class AdInsight:
    impressions: int = 0
    clicks: int = 0
    spend: float = 0.0
    reach: int = 0
    ctr: float = 0.0
    cpc: float = 0.0
    cpm: float = 0.0
    actions: list = field(default_factory=list)
    action_values: list = field(default_factory=list)
    conversion_values: list = field(default_factory=list)
    cost_per_action_type: list = field(default_factory=list)

    @classmethod
    def from_graph(cls, data):
        data = _as_dict(data)
        return cls(
            impressions=_to_int(data.get('impressions')),
            clicks=_to_int(data.get('clicks')),
            spend=_to_float(data.get('spend')),
            reach=_to_int(data.get('reach')),
            ctr=_to_float(data.get('ctr')),
            cpc=_to_float(data.get('cpc')),
            cpm=_to_float(data.get('cpm')),
            actions=_as_list(data.get('actions')),
            action_values=_as_list(data.get('action_values')),
            conversion_values=_as_list(data.get('conversion_values')),
            cost_per_action_type=_as_list(data.get('cost_per_action_type')),
        )

    @classmethod
    def from_edge(cls, edge):
        """The nested `insights` edge holds at most one row for a single time range."""
        rows = _as_list(_as_dict(edge).get('data'))
        return cls.from_graph(rows[0]) if rows else None

    @property
    def conversions(self):
        """Purchases if any were reported, otherwise leads. The two are never added up."""
        return _to_int(_purchase_then_lead(self.actions) or 0)

    @property
    def reported_revenue(self):
        """Explicit conversion value from action_values, then conversion_values; None if absent."""
        value = _purchase_then_lead(self.action_values)
        if value is None:
            value = _purchase_then_lead(self.conversion_values)
        return value

    @property
    def cost_per_action(self):
        return _purchase_then_lead(self.cost_per_action_type)


@dataclass
class GraphAd:
    id: str
    name: str = ''
    status: str = 'archived'
    creative_id: str = None
    adset_name: str = None
    start_time: datetime = None
    end_time: datetime = None
    insight: AdInsight = None

    @classmethod
    def from_graph(cls, data):
        data = _as_dict(data)
        adset = _as_dict(data.get('adset'))
        return cls(
            id=str(data.get('id', '')),
            name=data.get('name') or '',
            status=AD_STATUS_MAP.get(str(data.get('status') or '').upper(), 'archived'),
            creative_id=_as_dict(data.get('creative')).get('id'),
            adset_name=adset.get('name'),
            start_time=_parse_graph_time(adset.get('start_time')),
            end_time=_parse_graph_time(adset.get('end_time')),
            insight=AdInsight.from_edge(data.get('insights')),
        )


@dataclass
class GraphCreative:
    id: str
    name: str = ''
    title: str = None
    body: str = None
    story_spec: dict = field(default_factory=dict)
    thumbnail_url: str = None
    image_url: str = None
    effective_object_story_id: str = None

    @classmethod
    def from_graph(cls, data):
        data = _as_dict(data)
        return cls(
            id=str(data.get('id', '')),
            name=data.get('name') or '',
            title=data.get('title'),
            body=data.get('body'),
            story_spec=_as_dict(data.get('object_story_spec')),
            thumbnail_url=data.get('thumbnail_url'),
            image_url=data.get('image_url'),
            effective_object_story_id=data.get('effective_object_story_id'),
        )

    @property
    def media_type(self):
        return 'video' if self.story_spec.get('video_data') else 'image'

    def text(self):
        """All human-readable copy of the creative, space-joined."""
        link = _as_dict(self.story_spec.get('link_data'))
        photo = _as_dict(self.story_spec.get('photo_data'))
        video = _as_dict(self.story_spec.get('video_data'))
        call_to_action = _as_dict(_as_dict(link.get('call_to_action')).get('value'))
        parts = (
            self.name, self.title, self.body,
            link.get('message'), link.get('description'), link.get('name'),
            call_to_action.get('link_caption'),
            photo.get('message'),
            video.get('message'), video.get('title'),
        )
        return ' '.join(part for part in parts if isinstance(part, str) and part)

    def story_media_url(self):
        video = _as_dict(self.story_spec.get('video_data'))
        link = _as_dict(self.story_spec.get('link_data'))
        photo = _as_dict(self.story_spec.get('photo_data'))
        return video.get('image_url') or link.get('picture') or photo.get('url')


@dataclass
class CreativeRecord:
    id: str
    name: str
    type: str
    url: str
    thumbnail_url: str
    themes: list
    status: str = 'archived'
    impressions: int = 0
    clicks: int = 0
    ctr: float = 0.0
    conversions: int = 0
    spend: float = 0.0
    revenue: float = 0.0
    roas: float = 0.0
    cost_per_action: float = 0.0
    performance: float = DEFAULT_PERFORMANCE_SCORE
    start_date: str = None
    end_date: str = None
    ad_names: list = field(default_factory=list)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'type': self.type,
            'url': self.url,
            'thumbnailUrl': self.thumbnail_url,
            'themes': list(self.themes),
            'status': self.status,
            'impressions': self.impressions,
            'clicks': self.clicks,
            'ctr': self.ctr,
            'conversions': self.conversions,
            'spend': self.spend,
            'revenue': self.revenue,
            'roas': self.roas,
            'cost_per_action': self.cost_per_action,
            'performance': self.performance,
            'startDate': self.start_date,
            'endDate': self.end_date,
        }


# --- Request context ----------------------------------------------------------

def resolve_ad_account(user_id, ad_account_id=None):
    """Explicit account first, then the user's saved default. Raises MissingAdAccountError if neither exists."""
    if ad_account_id:
        return normalize_ad_account_id(ad_account_id)
    connection = token_store.get_connection(user_id)
    if connection is not None and connection.ad_account_id:
        return normalize_ad_account_id(connection.ad_account_id)
    raise MissingAdAccountError()


def _resolve_context(user_id, ad_account_id, time_range):
    account = resolve_ad_account(user_id, ad_account_id)
    # Token checks happen before any network call.
    connection = token_store.get_active_connection(user_id)
    since, until = resolve_time_range(time_range)
    return account, connection.access_token, since, until


def _upstream_error(what, ad_account_id, error):
    current_app.logger.error(f"Meta API error while fetching {what} for {ad_account_id}: {error.payload}", exc_info=True)
    return UpstreamFetchError(f"Failed to fetch {what} from the Meta API.", details=error.payload,
                              rate_limited=error.is_rate_limited)


# --- Creatives ------------------------------------------------------------------

def _manual_tags(user_id, creative_ids):
    if not creative_ids:
        return {}
    rows = CreativeTag.query.filter(CreativeTag.user_id == user_id,
                                    CreativeTag.creative_id.in_(creative_ids)).all()
    return {row.creative_id: list(row.tags or []) for row in rows}


def _resolve_media(creative, client, access_token, placeholder):
    url = creative.image_url or creative.thumbnail_url
    thumbnail = creative.thumbnail_url or creative.image_url
    if url:
        return url, thumbnail

    story_url = creative.story_media_url()
    if story_url:
        return story_url, story_url

    if creative.effective_object_story_id:
        try:
            picture = client.get_object_picture(creative.effective_object_story_id, access_token)
        except GraphAPIError as e:
            current_app.logger.warning(f"Picture lookup failed for creative {creative.id} "
                                       f"(story {creative.effective_object_story_id}): {e}")
            picture = None
        if picture:
            return picture, picture

    return placeholder, placeholder


def aggregate_creative(creative, ads, themes, media, assumed_value_per_conversion, now=None):
    """
    Rolls the ads that reference `creative` up into a CreativeRecord.

    `ads` may be empty: the creative is then archived with zero metrics.
    """
    now = now or datetime.now(timezone.utc)
    url, thumbnail = media
    record = CreativeRecord(id=creative.id, name=clean_creative_name(creative.name), type=creative.media_type,
                            url=url, thumbnail_url=thumbnail, themes=themes)

    if ads:
        record.status = min((ad.status for ad in ads), key=lambda status: STATUS_RANK.get(status, 2))

    cpa_values = []
    for ad in ads:
        if ad.name and ad.name not in record.ad_names:
            record.ad_names.append(ad.name)
        insight = ad.insight
        if insight is None:
            continue
        conversions = insight.conversions
        record.impressions += insight.impressions
        record.clicks += insight.clicks
        record.spend += insight.spend
        record.conversions += conversions
        revenue = insight.reported_revenue
        record.revenue += revenue if revenue is not None else conversions * assumed_value_per_conversion
        if insight.cost_per_action is not None:
            cpa_values.append(insight.cost_per_action)

    record.spend = round(record.spend, 2)
    record.revenue = round(record.revenue, 2)
    record.ctr = record.clicks / record.impressions if record.impressions > 0 else 0.0
    record.roas = record.revenue / record.spend if record.spend > 0 else 0.0
    if cpa_values:
        record.cost_per_action = round(sum(cpa_values) / len(cpa_values), 2)
    elif record.conversions > 0:
        record.cost_per_action = round(record.spend / record.conversions, 2)

    if record.roas > 0:
        performance = record.roas
    elif record.ctr > 0.05:
        performance = record.ctr * 20
    else:
        performance = DEFAULT_PERFORMANCE_SCORE
    record.performance = round(performance, 2)

    starts = [ad.start_time for ad in ads if ad.start_time]
    ends = [ad.end_time for ad in ads if ad.end_time]
    record.start_date = (min(starts) if starts else now).isoformat()
    record.end_date = (max(ends) if ends else now).isoformat()
    return record


def fetch_creatives(user_id, ad_account_id=None, time_range='last_30_days'):
    """
    Creatives of an ad account with performance metrics and themes.

    Raises:
        MissingAdAccountError, NoConnectionError, TokenExpiredError: Before any network call.
        UpstreamFetchError: If either the creative or the ad listing fails. No partial results.

    Returns:
        list[CreativeRecord]
    """
    account, access_token, since, until = _resolve_context(user_id, ad_account_id, time_range)
    client = get_graph_client()
    current_app.logger.info(f"Fetching creatives for user {user_id}, account {account}, {since} to {until}.")

    try:
        raw_creatives = client.list_ad_creatives(account, access_token)
        raw_ads = client.list_ads(account, access_token, since, until)
    except GraphAPIError as e:
        raise _upstream_error('creatives', account, e) from e

    creatives = [GraphCreative.from_graph(item) for item in raw_creatives]
    ads_by_creative = {}
    for ad in (GraphAd.from_graph(item) for item in raw_ads):
        if ad.creative_id:
            ads_by_creative.setdefault(str(ad.creative_id), []).append(ad)

    config = current_app.config
    placeholder = config['CREATIVE_PLACEHOLDER_IMAGE']
    assumed_value = config['ASSUMED_VALUE_PER_CONVERSION']
    overrides = _manual_tags(user_id, [creative.id for creative in creatives])
    now = datetime.now(timezone.utc)

    records = []
    for creative in creatives:
        themes = overrides.get(creative.id) or theme_classifier.classify(creative.text())
        if not themes:
            themes = [theme_classifier.OTHER_THEME]
        media = _resolve_media(creative, client, access_token, placeholder)
        records.append(aggregate_creative(creative, ads_by_creative.get(creative.id, []), themes, media,
                                          assumed_value, now=now))

    linked = sum(1 for creative in creatives if creative.id in ads_by_creative)
    current_app.logger.info(f"Aggregated {len(records)} creatives ({linked} with linked ads, {len(raw_ads)} ads) for {account}.")
    return records


# --- Themes ---------------------------------------------------------------------

def _theme_id(name):
    return re.sub(r'[^a-z0-9]+', '-', name.lower()).strip('-')


def build_theme_records(creatives):
    """Groups creatives by theme, in order of first appearance."""
    themes = {}
    for creative in creatives:
        for theme in creative.themes:
            entry = themes.get(theme)
            if entry is None:
                entry = themes[theme] = {
                    'id': _theme_id(theme),
                    'name': theme,
                    'performance': DEFAULT_PERFORMANCE_SCORE,
                    'count': 0,
                    'totalSpend': 0.0,
                    'totalResults': 0,
                    'examples': [],
                    'color': theme_classifier.theme_color(theme),
                }
            entry['count'] += 1
            entry['totalSpend'] += creative.spend
            entry['totalResults'] += creative.conversions
            for ad_name in creative.ad_names:
                if len(entry['examples']) >= MAX_THEME_EXAMPLES:
                    break
                if ad_name not in entry['examples']:
                    entry['examples'].append(ad_name)

    for entry in themes.values():
        entry['totalSpend'] = round(entry['totalSpend'], 2)
        if entry['totalSpend'] > 0 and entry['totalResults'] > 0:
            # Same flat value per result as the revenue assumption.
            value = current_app.config['ASSUMED_VALUE_PER_CONVERSION']
            entry['performance'] = round(entry['totalResults'] * value / entry['totalSpend'], 2)
    return list(themes.values())


def sample_theme_records():
    """Fixed illustrative theme data, served when the Meta API cannot be reached."""
    records = []
    for index, theme in enumerate(theme_classifier.THEME_DEFINITIONS):
        records.append({
            'id': _theme_id(theme.name),
            'name': theme.name,
            'performance': round(1.85 - index * 0.15, 2),
            'count': 10 - index,
            'totalSpend': round(950.0 - index * 95.5, 2),
            'totalResults': 18 - index * 2,
            'examples': list(theme.patterns[:2]),
            'color': theme.color,
        })
    return records


# --- Campaigns ------------------------------------------------------------------

def _campaign_record(data):
    data = _as_dict(data)
    insight = AdInsight.from_edge(data.get('insights')) or AdInsight()
    results = _purchase_then_lead(insight.actions) or 0.0
    revenue = _find_action_value(insight.action_values, PURCHASE_ACTION_TYPES) or 0.0
    spent = insight.spend
    return {
        'id': str(data.get('id', '')),
        'name': data.get('name') or '',
        'status': str(data.get('status') or 'unknown').lower(),
        'objective': data.get('objective') or '',
        'budget': _to_float(data.get('budget_remaining')),
        'spent': spent,
        'impressions': insight.impressions,
        'reach': insight.reach,
        'clicks': insight.clicks,
        'ctr': insight.ctr,
        'cpc': insight.cpc,
        'cpm': insight.cpm,
        'results': results,
        'revenue': revenue,
        'cpa': insight.cost_per_action or 0.0,
        'roi': revenue / spent if spent > 0 else 0.0,
    }


def summarize_campaigns(campaigns):
    total_spent = sum(campaign['spent'] for campaign in campaigns)
    total_results = sum(campaign['results'] for campaign in campaigns)
    total_revenue = sum(campaign['revenue'] for campaign in campaigns)
    return {
        'totalSpent': round(total_spent, 2),
        'totalResults': total_results,
        'totalRevenue': round(total_revenue, 2),
        'averageCPA': total_spent / total_results if total_results > 0 else 0.0,
        'averageROI': total_revenue / total_spent if total_spent > 0 else 0.0,
    }


def fetch_campaigns(user_id, ad_account_id=None, time_range='last_30_days'):
    """Campaigns of the ad account with their insights for the window, plus account-level totals."""
    account, access_token, since, until = _resolve_context(user_id, ad_account_id, time_range)
    client = get_graph_client()
    try:
        raw_campaigns = client.list_campaigns(account, access_token, since, until)
    except GraphAPIError as e:
        raise _upstream_error('campaigns', account, e) from e

    campaigns = [_campaign_record(item) for item in raw_campaigns]
    current_app.logger.info(f"Fetched {len(campaigns)} campaigns for user {user_id}, account {account}.")
    return {
        'campaigns': campaigns,
        'insights': summarize_campaigns(campaigns),
        'timeRange': {'since': since.isoformat(), 'until': until.isoformat()},
    }


# --- Ad accounts ------------------------------------------------------------------

def list_ad_accounts(user_id):
    """
    Ad accounts the connected Meta user can access, as {'adAccounts': [{id, name, accountId}]}.

    Listings are cached per user for AD_ACCOUNTS_CACHE_TTL seconds, but only
    served while the connection is active. Writing the cache is best-effort.
    """
    connection = token_store.get_active_connection(user_id)
    ttl = current_app.config['AD_ACCOUNTS_CACHE_TTL']
    cached = AdAccountCache.query.filter_by(user_id=user_id).first()
    if cached is not None and cached.is_fresh(ttl):
        current_app.logger.debug(f"Serving cached ad accounts for user {user_id}.")
        return cached.data

    client = get_graph_client()
    try:
        raw_accounts = client.list_ad_accounts(connection.access_token)
    except GraphAPIError as e:
        raise _upstream_error('ad accounts', 'me', e) from e

    data = {'adAccounts': [
        {'id': account.get('id'), 'name': account.get('name'), 'accountId': account.get('account_id')}
        for account in raw_accounts if isinstance(account, dict)
    ]}

    try:
        if cached is None:
            cached = AdAccountCache(user_id=user_id)
            db.session.add(cached)
        cached.data = data
        cached.updated_at = datetime.utcnow()
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.warning(f"Could not cache ad accounts for user {user_id}: {e}")
    return data


# --- Manual tags ------------------------------------------------------------------

def update_creative_tags(user_id, creative_id, tags, ad_account_id=None):
    """
    Stores the user's theme override for a creative. An empty list clears the override.

    Raises:
        BadRequestError: If `creative_id` is missing or `tags` is not a list.
        AdAccountAccessError: If `ad_account_id` is not the user's connected ad account.
    """
    if not creative_id:
        raise BadRequestError("'creativeId' is required.")
    if tags is None:
        tags = []
    if not isinstance(tags, list):
        raise BadRequestError("'tags' must be a list of theme names.")

    account = normalize_ad_account_id(ad_account_id)
    if account:
        connection = token_store.get_connection(user_id)
        if connection is None or normalize_ad_account_id(connection.ad_account_id) != account:
            raise AdAccountAccessError()

    cleaned = []
    for tag in tags:
        if isinstance(tag, str) and tag.strip() and tag.strip() not in cleaned:
            cleaned.append(tag.strip())

    row = CreativeTag.query.filter_by(creative_id=str(creative_id), user_id=user_id).first()
    if row is None:
        row = CreativeTag(creative_id=str(creative_id), user_id=user_id)
        db.session.add(row)
    row.tags = cleaned
    if account:
        row.ad_account_id = account
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise
    current_app.logger.info(f"User {user_id} set tags {cleaned} on creative {creative_id}.")
    return {'creativeId': row.creative_id, 'tags': list(row.tags), 'adAccountId': row.ad_account_id,
            'updatedAt': row.updated_at.isoformat() if row.updated_at else None}
