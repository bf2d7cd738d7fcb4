"""
AudienceContextAggregator - cross-platform audience snapshot for one user

build(user_id):
1. read the user's active analytics credentials from the vault (request
   thread; the session is not shared with workers)
2. fetch every platform in parallel on a bounded thread pool, each call with
   its own timeout; a failing or slow platform contributes nothing and is
   reported as a low-quality data source instead of failing the build
3. merge the successful PlatformInsights and derive recommendations

Demographic buckets are summed, not averaged. Cohort ranking is
performance_score desc, then size desc, then name so output is deterministic.
"""

import concurrent.futures
import threading
import time
from collections import OrderedDict
from itertools import combinations
from typing import Dict, Any, List, Optional, Tuple

from logging_config import get_logger
from services.audience.audience_context import (
    AudienceContext, DataSource, AudienceSummary, CohortSegment, CohortAnalysis, PlatformOverlap,
    PlatformEfficiency, PerformanceMetrics, UntappedSegment, ICPInsights
)
from services.audience.platform_clients import AnalyticsPlatformClient, PlatformInsights
from services.audience.recommendation_engine import generate_recommendations
from services.common.errors import InboxError
from services.credential_vault import CredentialVault
from services.enums import ANALYTICS_PROVIDERS, DataQuality
from utils.datetime_utils import format_utc_iso, utc_now

logger = get_logger(__name__)

HIGH_VALUE_SCORE = 80
SUCCESS_COVERAGE = 85
TOP_PLATFORMS = 5
MAX_TRAITS = 10


class AudienceContextAggregator:
    """Builds AudienceContext snapshots with partial-failure isolation"""

    def __init__(self, credential_vault: CredentialVault,
                 platform_clients: Dict[str, AnalyticsPlatformClient],
                 token_client=None,
                 fetch_timeout: float = 15.0,
                 max_workers: int = 8,
                 cache_ttl: int = 0):
        """
        Args:
            credential_vault: Source of the user's analytics credentials
            platform_clients: provider → client
            token_client: Optional OAuthTokenClient; when set, expiring tokens
                          are refreshed before fetching
            fetch_timeout: Seconds allowed for each platform call
            max_workers: Thread pool bound
            cache_ttl: Seconds a built context is reused; 0 disables the cache
        """
        self.credential_vault = credential_vault
        self.platform_clients = platform_clients
        self.token_client = token_client
        self.fetch_timeout = fetch_timeout
        self.max_workers = max_workers
        self.cache_ttl = cache_ttl
        self._cache: Dict[str, Tuple[float, AudienceContext]] = {}
        self._cache_lock = threading.Lock()

    # Cache

    def _cached(self, user_id: str) -> Optional[AudienceContext]:
        if not self.cache_ttl:
            return None
        with self._cache_lock:
            entry = self._cache.get(user_id)
            if entry and entry[0] > time.monotonic():
                return entry[1]
            self._cache.pop(user_id, None)
        return None

    def invalidate(self, user_id: Optional[str] = None) -> None:
        with self._cache_lock:
            if user_id is None:
                self._cache.clear()
            else:
                self._cache.pop(user_id, None)

    # Build

    def build(self, user_id: str, use_cache: bool = True) -> AudienceContext:
        if use_cache:
            cached = self._cached(user_id)
            if cached is not None:
                return cached

        integrations = [
            integration for integration in self.credential_vault.list_integrations(user_id)
            if integration['is_active'] and integration['provider'] in ANALYTICS_PROVIDERS
        ]

        errors: Dict[str, str] = {}
        requests_by_platform = {}
        for integration in integrations:
            provider = integration['provider']
            client = self.platform_clients.get(provider)
            credentials = self._credentials(user_id, provider)
            if client is None:
                errors[provider] = "No client for platform"
            elif credentials is None:
                errors[provider] = "Credentials unavailable"
            else:
                requests_by_platform[provider] = (client, credentials)

        insights = self._fetch_all(requests_by_platform, errors)

        for provider in insights:
            self.credential_vault.update_last_sync(user_id, provider)

        data_sources = self._data_sources(user_id, integrations, insights, errors)
        ordered = [insights[i['provider']] for i in integrations if i['provider'] in insights]

        summary = self.build_summary(ordered)
        cohorts = self.build_cohort_analysis(ordered)
        performance = self.build_performance_metrics(ordered, self._merged_cohorts(ordered))
        icp = self.build_icp_insights(summary, ordered)
        recommendations = generate_recommendations(summary, cohorts, performance, icp, data_sources)

        context = AudienceContext(
            user_id=user_id,
            timestamp=format_utc_iso(utc_now()),
            data_sources=data_sources,
            audience_summary=summary,
            cohort_analysis=cohorts,
            performance_metrics=performance,
            icp_insights=icp,
            recommendations=recommendations,
        )
        logger.info("Audience context built", user_id=user_id, platforms=len(integrations),
                    succeeded=len(insights), failed=len(errors))

        if self.cache_ttl:
            with self._cache_lock:
                self._cache[user_id] = (time.monotonic() + self.cache_ttl, context)
        return context

    def _credentials(self, user_id: str, provider: str) -> Optional[Dict[str, Any]]:
        if self.token_client is not None:
            return self.credential_vault.ensure_fresh(user_id, provider, self.token_client)
        return self.credential_vault.get(user_id, provider)

    def _fetch_all(self, requests_by_platform, errors: Dict[str, str]) -> Dict[str, PlatformInsights]:
        """Run every platform call in parallel; failures land in ``errors``"""
        if not requests_by_platform:
            return {}

        results: Dict[str, PlatformInsights] = {}
        executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(requests_by_platform))
        )
        try:
            future_to_platform = {
                executor.submit(client.fetch, credentials): platform
                for platform, (client, credentials) in requests_by_platform.items()
            }
            done, not_done = concurrent.futures.wait(future_to_platform, timeout=self.fetch_timeout)

            for future in not_done:
                platform = future_to_platform[future]
                future.cancel()
                errors[platform] = f"Timed out after {self.fetch_timeout}s"
                logger.warning("Analytics fetch timed out", platform=platform)

            for future in done:
                platform = future_to_platform[future]
                try:
                    results[platform] = future.result()
                except InboxError as e:
                    errors[platform] = e.message
                    logger.warning("Analytics fetch failed", platform=platform, error=e.message, code=e.code)
                except Exception as e:
                    # A malformed response must not take down the other platforms
                    errors[platform] = "Unexpected response"
                    logger.error("Analytics fetch crashed", platform=platform, error=str(e), exc_info=True)
        finally:
            # Hung calls are abandoned, not awaited
            executor.shutdown(wait=False, cancel_futures=True)
        return results

    def _data_sources(self, user_id: str, integrations: List[Dict[str, Any]],
                      insights: Dict[str, PlatformInsights], errors: Dict[str, str]) -> List[DataSource]:
        synced_at = format_utc_iso(utc_now())
        sources = []
        for integration in integrations:
            provider = integration['provider']
            ok = provider in insights
            account_info = None
            if integration.get('account_id'):
                account_info = {'id': integration['account_id'],
                                'name': integration.get('account_name') or provider}
            sources.append(DataSource(
                platform=provider,
                connected=True,
                last_synced=synced_at if ok else integration.get('last_synced_at'),
                data_quality=DataQuality.HIGH.value if ok else DataQuality.LOW.value,
                coverage_score=SUCCESS_COVERAGE if ok else 0,
                account_info=account_info,
                error=None if ok else errors.get(provider),
            ))
        return sources

    # Merge

    @staticmethod
    def build_summary(insights: List[PlatformInsights]) -> AudienceSummary:
        summary = AudienceSummary(total_audiences=len(insights))
        traits: List[str] = []
        platform_reach = []

        for item in insights:
            summary.total_reach += item.reach
            if item.reach:
                platform_reach.append((item.platform, item.reach))
            for target, buckets in ((summary.age_distribution, item.age_ranges),
                                    (summary.gender_split, item.gender),
                                    (summary.geographic_concentration, item.locations)):
                for bucket, count in buckets.items():
                    target[bucket] = target.get(bucket, 0) + count
            for trait in item.behaviors + item.interests:
                if trait not in traits:
                    traits.append(trait)

        platform_reach.sort(key=lambda pair: (-pair[1], pair[0]))
        summary.top_platforms = [{'platform': p, 'reach': r} for p, r in platform_reach[:TOP_PLATFORMS]]
        summary.behavioral_traits = traits[:MAX_TRAITS]
        return summary

    @staticmethod
    def _merged_cohorts(insights: List[PlatformInsights]) -> List[CohortSegment]:
        """
        Merge same-named segments across platforms and rank them.

        Sizes add up; the score, trend and conversion rate of the best-scoring
        platform win; platforms and characteristics are unioned in order.
        """
        merged: "OrderedDict[str, CohortSegment]" = OrderedDict()
        for item in insights:
            for segment in item.segments:
                cohort = merged.get(segment.name)
                if cohort is None:
                    merged[segment.name] = CohortSegment(
                        name=segment.name,
                        size=segment.size,
                        platforms=[item.platform],
                        characteristics=list(segment.characteristics),
                        performance_score=segment.performance_score,
                        growth_trend=segment.growth_trend,
                        conversion_rate=segment.conversion_rate,
                    )
                    continue
                cohort.size += segment.size
                if item.platform not in cohort.platforms:
                    cohort.platforms.append(item.platform)
                for trait in segment.characteristics:
                    if trait not in cohort.characteristics:
                        cohort.characteristics.append(trait)
                if segment.performance_score > cohort.performance_score:
                    cohort.performance_score = segment.performance_score
                    cohort.growth_trend = segment.growth_trend
                if segment.conversion_rate is not None:
                    cohort.conversion_rate = max(cohort.conversion_rate or 0, segment.conversion_rate)

        return sorted(merged.values(), key=lambda c: (-c.performance_score, -c.size, c.name))

    def build_cohort_analysis(self, insights: List[PlatformInsights]) -> CohortAnalysis:
        cohorts = self._merged_cohorts(insights)
        return CohortAnalysis(
            high_value_segments=[c for c in cohorts if c.performance_score >= HIGH_VALUE_SCORE],
            emerging_segments=[c for c in cohorts
                               if c.growth_trend == 'increasing' and c.performance_score < HIGH_VALUE_SCORE],
            declining_segments=[c for c in cohorts if c.growth_trend == 'decreasing'],
            cross_platform_overlap=self._overlaps(insights),
        )

    @staticmethod
    def _overlaps(insights: List[PlatformInsights]) -> List[PlatformOverlap]:
        """Pairwise overlap of segment names (Jaccard, as a percentage)"""
        names = {item.platform: {s.name for s in item.segments} for item in insights if item.segments}
        traits = {
            (item.platform, s.name): s.characteristics
            for item in insights for s in item.segments
        }
        overlaps = []
        for first, second in combinations(sorted(names), 2):
            shared = names[first] & names[second]
            if not shared:
                continue
            union = names[first] | names[second]
            shared_traits: List[str] = []
            for name in sorted(shared):
                for platform in (first, second):
                    for trait in traits.get((platform, name), []):
                        if trait not in shared_traits:
                            shared_traits.append(trait)
            overlaps.append(PlatformOverlap(
                platforms=[first, second],
                overlap_percentage=round(len(shared) / len(union) * 100, 1),
                shared_characteristics=shared_traits[:5] or sorted(shared),
            ))
        overlaps.sort(key=lambda o: (-o.overlap_percentage, o.platforms))
        return overlaps

    @staticmethod
    def build_performance_metrics(insights: List[PlatformInsights],
                                  cohorts: List[CohortSegment]) -> PerformanceMetrics:
        efficiencies = [
            PlatformEfficiency(platform=item.platform, cpc=item.efficiency.cpc,
                               ctr=item.efficiency.ctr, roas=item.efficiency.roas)
            for item in insights if item.efficiency is not None
        ]

        converting = sorted((c for c in cohorts if c.conversion_rate), key=lambda c: (-c.conversion_rate, c.name))
        top_sources = sorted(
            ({'source': item.platform, 'attributed_conversions': item.efficiency.conversions}
             for item in insights if item.efficiency is not None and item.efficiency.conversions),
            key=lambda s: (-s['attributed_conversions'], s['source'])
        )

        by_roas = sorted((e for e in efficiencies if e.roas > 0), key=lambda e: (-e.roas, e.platform))
        total_roas = sum(e.roas for e in by_roas)
        budget = [
            {'platform': e.platform, 'recommended_allocation': round(e.roas / total_roas * 100, 1)}
            for e in by_roas
        ]

        return PerformanceMetrics(
            efficiency_by_platform=efficiencies,
            top_converting_cohorts=[
                {'cohort': c.name, 'conversion_rate': c.conversion_rate, 'platforms': c.platforms}
                for c in converting[:5]
            ],
            top_sources=top_sources,
            most_efficient_channels=[e.platform for e in by_roas[:2]],
            budget_recommendations=budget,
        )

    def build_icp_insights(self, summary: AudienceSummary, insights: List[PlatformInsights]) -> ICPInsights:
        def ranked(buckets: Dict[str, int]) -> List[str]:
            return [k for k, _ in sorted(buckets.items(), key=lambda kv: (-kv[1], kv[0]))]

        ages = ranked(summary.age_distribution)
        genders = ranked(summary.gender_split)
        locations = ranked(summary.geographic_concentration)

        demographics = {}
        if ages:
            demographics['age_primary'] = ages[0]
        if genders:
            demographics['gender_primary'] = genders[0]
        if locations:
            demographics['location_primary'] = locations[0]

        behaviors: List[str] = []
        interests: List[str] = []
        for item in insights:
            behaviors.extend(b for b in item.behaviors if b not in behaviors)
            interests.extend(i for i in item.interests if i not in interests)

        top_platforms = [p['platform'] for p in summary.top_platforms]
        untapped = []
        for cohort in self._merged_cohorts(insights):
            if len(cohort.platforms) != 1:
                continue
            others = [p for p in top_platforms if p not in cohort.platforms][:2]
            untapped.append(UntappedSegment(
                segment=cohort.name,
                potential_reach=cohort.size,
                similarity_score=cohort.performance_score,
                recommended_platforms=others or list(cohort.platforms),
            ))

        return ICPInsights(
            demographics=demographics,
            behaviors=behaviors[:5],
            interests=interests[:5],
            platforms=top_platforms,
            untapped_segments=untapped,
            expansion_geographic=locations[1:4],
            expansion_demographic=[f"{age} age group" for age in ages[1:3]],
        )

    # Reporting

    @staticmethod
    def generate_summary(context: AudienceContext) -> str:
        """Plain-language digest of a context for the assistant UI"""
        connected = sum(1 for source in context.data_sources if source.connected)
        summary = context.audience_summary
        top_platform = summary.top_platforms[0]['platform'] if summary.top_platforms else None

        paragraphs = [
            f"Based on your {connected} connected platform{'s' if connected != 1 else ''}, your total "
            f"addressable audience is {summary.total_reach:,} users"
            + (f", with {top_platform} being your strongest channel." if top_platform else ".")
        ]

        failed = [s.platform for s in context.data_sources if s.data_quality == DataQuality.LOW.value]
        if failed:
            paragraphs.append(f"Data could not be retrieved from {', '.join(failed)}; totals exclude them.")

        if context.cohort_analysis.high_value_segments:
            cohort = context.cohort_analysis.high_value_segments[0]
            paragraphs.append(
                f'Your highest-performing audience segment is "{cohort.name}" with {cohort.size:,} users '
                f"and a performance score of {cohort.performance_score:g}/100, currently {cohort.growth_trend} "
                f"across {' and '.join(cohort.platforms)}."
            )

        top_recommendation = next((r for r in context.recommendations if r.priority == 'high'), None)
        if top_recommendation:
            paragraphs.append(
                f"For immediate optimization, I recommend: {top_recommendation.title}. "
                f"{top_recommendation.description}"
            )

        icp = context.icp_insights
        if icp.untapped_segments:
            paragraphs.append(f"There are {len(icp.untapped_segments)} untapped segments worth exploring.")

        return "\n\n".join(paragraphs)
