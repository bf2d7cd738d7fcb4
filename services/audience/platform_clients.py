"""
Analytics platform clients for audience aggregation

Each client fetches one platform's reporting data with the tenant's
decrypted credentials and normalizes it into ``PlatformInsights``. Clients
are stateless and safe to call from worker threads: they never touch the
database, only HTTP.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Tuple

import requests

from services.common.errors import ProviderConfigurationError
from services.common.http_client import ProviderHttpClient, DEFAULT_TIMEOUT
from services.enums import AnalyticsProvider

logger = logging.getLogger(__name__)


@dataclass
class Segment:
    """An audience cohort as reported by one platform"""
    name: str
    size: int = 0
    performance_score: float = 0.0
    growth_trend: str = 'stable'  # increasing | stable | decreasing
    characteristics: List[str] = field(default_factory=list)
    conversion_rate: Optional[float] = None


@dataclass
class Efficiency:
    cpc: float = 0.0
    ctr: float = 0.0
    roas: float = 0.0
    conversions: int = 0
    spend: float = 0.0


@dataclass
class PlatformInsights:
    """One platform's normalized reporting snapshot"""
    platform: str
    reach: int = 0
    age_ranges: Dict[str, int] = field(default_factory=dict)
    gender: Dict[str, int] = field(default_factory=dict)
    locations: Dict[str, int] = field(default_factory=dict)
    behaviors: List[str] = field(default_factory=list)
    interests: List[str] = field(default_factory=list)
    segments: List[Segment] = field(default_factory=list)
    efficiency: Optional[Efficiency] = None


def _number(value, cast=float, default=0):
    try:
        return cast(value)
    except (TypeError, ValueError):
        return default


def _buckets(raw) -> Dict[str, int]:
    """Accept {bucket: count} or [{'key'|'name': bucket, 'value'|'count': count}]"""
    if isinstance(raw, dict):
        return {str(k): _number(v, int) for k, v in raw.items()}
    buckets = {}
    for item in raw or []:
        if isinstance(item, dict):
            key = item.get('key') or item.get('name') or item.get('dimension')
            if key is not None:
                buckets[str(key)] = buckets.get(str(key), 0) + _number(
                    item.get('value', item.get('count')), int
                )
    return buckets


def _segments(raw) -> List[Segment]:
    segments = []
    for item in raw or []:
        if not isinstance(item, dict) or not item.get('name'):
            continue
        conversion_rate = item.get('conversion_rate')
        segments.append(Segment(
            name=str(item['name']),
            size=_number(item.get('size', item.get('count')), int),
            performance_score=_number(item.get('performance_score', item.get('score'))),
            growth_trend=item.get('growth_trend') or item.get('trend') or 'stable',
            characteristics=list(item.get('characteristics') or []),
            conversion_rate=_number(conversion_rate) if conversion_rate is not None else None,
        ))
    return segments


class AnalyticsPlatformClient:
    """
    Base client: authenticated GET of the platform's insights report.

    Subclasses set ``platform``/``base_url`` and override ``request_for`` and
    ``extract`` where their API differs from the common report shape.
    """

    platform: str = ''
    base_url: str = ''

    def __init__(self, timeout: Tuple[float, float] = DEFAULT_TIMEOUT,
                 session: Optional[requests.Session] = None):
        self.http = ProviderHttpClient(self.platform, self.base_url, timeout=timeout, session=session)

    def fetch(self, credentials: Dict[str, Any]) -> PlatformInsights:
        """
        Raises:
            ProviderConfigurationError: credentials lack what the API needs
            TransientProviderError / ProviderRejectedError: HTTP failure
        """
        method, endpoint, kwargs = self.request_for(credentials)
        body = self.http.request(method, endpoint, **kwargs)
        return self.extract(body)

    def request_for(self, credentials: Dict[str, Any]):
        return 'GET', 'insights', {'headers': self.auth_headers(credentials)}

    def auth_headers(self, credentials: Dict[str, Any]) -> Dict[str, str]:
        token = credentials.get('access_token')
        if not token:
            raise ProviderConfigurationError(f"{self.platform} credentials have no access token")
        return {'Authorization': f"Bearer {token}"}

    def _account(self, credentials: Dict[str, Any]) -> str:
        account_id = credentials.get('account_id')
        if not account_id:
            raise ProviderConfigurationError(f"{self.platform} credentials have no account id")
        return str(account_id)

    def extract(self, body: Dict[str, Any]) -> PlatformInsights:
        """Common report shape: {reach, demographics, behaviors, interests, segments, metrics}"""
        demographics = body.get('demographics') or {}
        metrics = body.get('metrics')
        return PlatformInsights(
            platform=self.platform,
            reach=_number(body.get('reach'), int),
            age_ranges=_buckets(demographics.get('age_ranges')),
            gender=_buckets(demographics.get('gender')),
            locations=_buckets(demographics.get('locations')),
            behaviors=list(body.get('behaviors') or []),
            interests=list(body.get('interests') or []),
            segments=_segments(body.get('segments')),
            efficiency=self._efficiency(metrics) if isinstance(metrics, dict) else None,
        )

    @staticmethod
    def _efficiency(metrics: Dict[str, Any]) -> Efficiency:
        return Efficiency(
            cpc=_number(metrics.get('cpc')),
            ctr=_number(metrics.get('ctr')),
            roas=_number(metrics.get('roas')),
            conversions=_number(metrics.get('conversions'), int),
            spend=_number(metrics.get('spend')),
        )


class GoogleAdsClient(AnalyticsPlatformClient):
    platform = AnalyticsProvider.GOOGLE_ADS.value
    base_url = 'https://googleads.googleapis.com/v17'

    QUERY = (
        "SELECT metrics.impressions, metrics.clicks, metrics.ctr, metrics.average_cpc, "
        "metrics.conversions, metrics.conversions_value, metrics.cost_micros "
        "FROM customer WHERE segments.date DURING LAST_30_DAYS"
    )

    def request_for(self, credentials):
        headers = self.auth_headers(credentials)
        if credentials.get('developer_token'):
            headers['developer-token'] = credentials['developer_token']
        return 'POST', f"customers/{self._account(credentials)}/googleAds:search", {
            'headers': headers, 'json_data': {'query': self.QUERY}
        }

    def extract(self, body):
        rows = [row.get('metrics') or {} for row in body.get('results') or []]
        impressions = sum(_number(m.get('impressions'), int) for m in rows)
        clicks = sum(_number(m.get('clicks'), int) for m in rows)
        cost = sum(_number(m.get('costMicros'), int) for m in rows) / 1_000_000
        value = sum(_number(m.get('conversionsValue')) for m in rows)
        return PlatformInsights(
            platform=self.platform,
            reach=impressions,
            efficiency=Efficiency(
                cpc=round(cost / clicks, 2) if clicks else 0.0,
                ctr=round(clicks / impressions * 100, 2) if impressions else 0.0,
                roas=round(value / cost, 2) if cost else 0.0,
                conversions=int(sum(_number(m.get('conversions')) for m in rows)),
                spend=round(cost, 2),
            ),
        )


class MetaInsightsClient(AnalyticsPlatformClient):
    platform = AnalyticsProvider.META_INSIGHTS.value
    base_url = 'https://graph.facebook.com/v19.0'

    def request_for(self, credentials):
        return 'GET', f"act_{self._account(credentials)}/insights", {
            'headers': self.auth_headers(credentials),
            'params': {
                'fields': 'reach,cpc,ctr,spend,purchase_roas,conversions',
                'date_preset': 'last_30d',
            },
        }

    def extract(self, body):
        row = (body.get('data') or [{}])[0]
        roas = row.get('purchase_roas') or []
        return PlatformInsights(
            platform=self.platform,
            reach=_number(row.get('reach'), int),
            efficiency=Efficiency(
                cpc=_number(row.get('cpc')),
                ctr=_number(row.get('ctr')),
                roas=_number(roas[0].get('value')) if roas else 0.0,
                conversions=sum(_number(c.get('value'), int) for c in row.get('conversions') or []),
                spend=_number(row.get('spend')),
            ),
        )


class YouTubeAnalyticsClient(AnalyticsPlatformClient):
    platform = AnalyticsProvider.YOUTUBE_ANALYTICS.value
    base_url = 'https://youtubeanalytics.googleapis.com/v2'

    def request_for(self, credentials):
        return 'GET', 'reports', {
            'headers': self.auth_headers(credentials),
            'params': {
                'ids': 'channel==MINE',
                'metrics': 'viewerPercentage',
                'dimensions': 'ageGroup,gender',
                'startDate': credentials.get('start_date', '2020-01-01'),
                'endDate': credentials.get('end_date', '2099-12-31'),
            },
        }

    def extract(self, body):
        # rows: [ageGroup, gender, viewerPercentage]
        age_ranges, gender = {}, {}
        for age_group, sex, share in body.get('rows') or []:
            weight = int(round(_number(share) * 100))
            age = str(age_group).replace('age', '')
            age_ranges[age] = age_ranges.get(age, 0) + weight
            gender[sex] = gender.get(sex, 0) + weight
        return PlatformInsights(platform=self.platform, age_ranges=age_ranges, gender=gender)


class LinkedInAdsClient(AnalyticsPlatformClient):
    platform = AnalyticsProvider.LINKEDIN_ADS.value
    base_url = 'https://api.linkedin.com/rest'

    def request_for(self, credentials):
        headers = self.auth_headers(credentials)
        headers['LinkedIn-Version'] = '202401'
        return 'GET', 'adAnalytics', {
            'headers': headers,
            'params': {
                'q': 'analytics',
                'pivot': 'ACCOUNT',
                'timeGranularity': 'ALL',
                'accounts': f"List(urn:li:sponsoredAccount:{self._account(credentials)})",
                'fields': 'approximateMemberReach,impressions,clicks,costInLocalCurrency,externalWebsiteConversions',
            },
        }

    def extract(self, body):
        row = (body.get('elements') or [{}])[0]
        impressions = _number(row.get('impressions'), int)
        clicks = _number(row.get('clicks'), int)
        cost = _number(row.get('costInLocalCurrency'))
        return PlatformInsights(
            platform=self.platform,
            reach=_number(row.get('approximateMemberReach'), int),
            efficiency=Efficiency(
                cpc=round(cost / clicks, 2) if clicks else 0.0,
                ctr=round(clicks / impressions * 100, 2) if impressions else 0.0,
                conversions=_number(row.get('externalWebsiteConversions'), int),
                spend=cost,
            ),
        )


class HubSpotClient(AnalyticsPlatformClient):
    platform = AnalyticsProvider.HUBSPOT_CRM.value
    base_url = 'https://api.hubapi.com'

    def request_for(self, credentials):
        return 'POST', 'crm/v3/objects/contacts/search', {
            'headers': self.auth_headers(credentials),
            'json_data': {'limit': 1, 'properties': ['lifecyclestage']},
        }

    def extract(self, body):
        # Total contact count is the CRM's audience size
        return PlatformInsights(platform=self.platform, reach=_number(body.get('total'), int))


class BranchClient(AnalyticsPlatformClient):
    platform = AnalyticsProvider.BRANCH.value
    base_url = 'https://api2.branch.io/v1'

    def request_for(self, credentials):
        key = credentials.get('branch_key') or credentials.get('access_token')
        if not key:
            raise ProviderConfigurationError("branch credentials have no key")
        return 'GET', 'query/analytics', {
            'headers': {'Access-Token': credentials.get('access_token', '')},
            'params': {'branch_key': key, 'data_source': 'eo_install', 'aggregation': 'unique_count'},
        }


class MixpanelClient(AnalyticsPlatformClient):
    platform = AnalyticsProvider.MIXPANEL.value
    base_url = 'https://mixpanel.com/api/2.0'

    def request_for(self, credentials):
        username = credentials.get('service_account_username')
        secret = credentials.get('service_account_secret')
        if not username or not secret or not credentials.get('project_id'):
            raise ProviderConfigurationError("mixpanel credentials need a service account and project id")
        return 'POST', 'cohorts/list', {
            'auth': (username, secret),
            'params': {'project_id': credentials['project_id']},
        }

    def extract(self, body):
        cohorts = body.get('data') if isinstance(body.get('data'), list) else []
        segments = [
            Segment(name=c['name'], size=_number(c.get('count'), int),
                    characteristics=[c['description']] if c.get('description') else [])
            for c in cohorts if isinstance(c, dict) and c.get('name')
        ]
        return PlatformInsights(platform=self.platform, reach=sum(s.size for s in segments), segments=segments)


class SegmentClient(AnalyticsPlatformClient):
    platform = AnalyticsProvider.SEGMENT.value
    base_url = 'https://api.segmentapis.com'

    def request_for(self, credentials):
        token = credentials.get('access_token') or credentials.get('api_token')
        space_id = credentials.get('space_id')
        if not token or not space_id:
            raise ProviderConfigurationError("segment credentials need an API token and space id")
        return 'GET', f"spaces/{space_id}/audiences", {'headers': {'Authorization': f"Bearer {token}"}}

    def extract(self, body):
        audiences = (body.get('data') or {}).get('audiences') or []
        segments = [
            Segment(name=a['name'], size=_number(a.get('size'), int),
                    characteristics=[a['description']] if a.get('description') else [])
            for a in audiences if isinstance(a, dict) and a.get('name')
        ]
        return PlatformInsights(platform=self.platform, reach=max((s.size for s in segments), default=0),
                                segments=segments)


CLIENT_TYPES = {
    client.platform: client
    for client in (GoogleAdsClient, MetaInsightsClient, YouTubeAnalyticsClient, LinkedInAdsClient,
                   HubSpotClient, BranchClient, MixpanelClient, SegmentClient)
}


def build_platform_clients(timeout: Tuple[float, float] = DEFAULT_TIMEOUT) -> Dict[str, AnalyticsPlatformClient]:
    return {platform: client_type(timeout=timeout) for platform, client_type in CLIENT_TYPES.items()}
