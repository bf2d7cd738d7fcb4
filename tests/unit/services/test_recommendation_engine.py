"""
Tests for the rule-based audience recommendations
"""

from services.audience.audience_context import (
    AudienceSummary, CohortAnalysis, CohortSegment, PerformanceMetrics, PlatformEfficiency,
    ICPInsights, UntappedSegment, DataSource
)
from services.audience.recommendation_engine import generate_recommendations


def source(platform, connected=True):
    return DataSource(platform=platform, connected=connected, last_synced=None, data_quality='high',
                      coverage_score=85)


def cohort(name, size, score):
    return CohortSegment(name=name, size=size, platforms=['google_ads'], characteristics=[],
                         performance_score=score, growth_trend='increasing')


class TestGenerateRecommendations:

    def test_all_rules_fire_in_order(self):
        performance = PerformanceMetrics(efficiency_by_platform=[
            PlatformEfficiency(platform='google_ads', cpc=1.0, ctr=2.0, roas=3.5),
            PlatformEfficiency(platform='meta_insights', cpc=1.0, ctr=2.0, roas=4.2),
        ])
        cohorts = CohortAnalysis(high_value_segments=[cohort('Homeowners', 10000, 88)])
        icp = ICPInsights(untapped_segments=[UntappedSegment(segment='Renters', potential_reach=2000,
                                                             similarity_score=72,
                                                             recommended_platforms=['linkedin_ads'])])

        recommendations = generate_recommendations(AudienceSummary(), cohorts, performance, icp,
                                                   [source('google_ads'), source('meta_insights')])

        assert [r.type for r in recommendations] == ['budget', 'targeting', 'targeting', 'platform']
        budget, lookalike, untapped, diversify = recommendations
        assert budget.required_platforms == ['meta_insights']
        assert '4.2x' in budget.description
        assert lookalike.expected_impact == 'Potential to reach additional 3,000 qualified users'
        assert untapped.confidence_score == 72
        assert untapped.required_platforms == ['linkedin_ads']
        assert diversify.priority == 'medium'
        assert 'Currently active on 2 platforms' in diversify.description

    def test_roas_tie_keeps_first_platform(self):
        performance = PerformanceMetrics(efficiency_by_platform=[
            PlatformEfficiency(platform='meta_insights', cpc=1.0, ctr=1.0, roas=2.0),
            PlatformEfficiency(platform='google_ads', cpc=1.0, ctr=1.0, roas=2.0),
        ])

        recommendations = generate_recommendations(AudienceSummary(), CohortAnalysis(), performance,
                                                    ICPInsights(), [])

        assert recommendations[0].required_platforms == ['meta_insights']

    def test_no_budget_shift_without_return_on_spend(self):
        performance = PerformanceMetrics(efficiency_by_platform=[
            PlatformEfficiency(platform='google_ads', cpc=1.2, ctr=0.8, roas=0.0),
            PlatformEfficiency(platform='meta_insights', cpc=0.9, ctr=1.1, roas=0.0),
        ])

        recommendations = generate_recommendations(AudienceSummary(), CohortAnalysis(), performance,
                                                   ICPInsights(), [])

        assert [r.type for r in recommendations] == ['platform']

    def test_budget_shift_skips_zero_roas_platforms(self):
        performance = PerformanceMetrics(efficiency_by_platform=[
            PlatformEfficiency(platform='google_ads', cpc=1.2, ctr=0.8, roas=0.0),
            PlatformEfficiency(platform='meta_insights', cpc=0.9, ctr=1.1, roas=1.5),
        ])

        recommendations = generate_recommendations(AudienceSummary(), CohortAnalysis(), performance,
                                                   ICPInsights(), [])

        assert recommendations[0].required_platforms == ['meta_insights']
        assert 'at 1.5x' in recommendations[0].description

    def test_enough_platforms_skips_diversification(self):
        sources = [source(p) for p in ('google_ads', 'meta_insights', 'hubspot_crm', 'mixpanel')]

        recommendations = generate_recommendations(AudienceSummary(), CohortAnalysis(), PerformanceMetrics(),
                                                   ICPInsights(), sources)

        assert recommendations == []

    def test_disconnected_sources_do_not_count(self):
        sources = [source('google_ads'), source('meta_insights', connected=False)]

        recommendations = generate_recommendations(AudienceSummary(), CohortAnalysis(), PerformanceMetrics(),
                                                   ICPInsights(), sources)

        assert 'Currently active on 1 platforms' in recommendations[0].description

    def test_same_inputs_same_output(self):
        args = (AudienceSummary(), CohortAnalysis(high_value_segments=[cohort('A', 10, 90)]),
                PerformanceMetrics(), ICPInsights(), [source('google_ads')])

        assert generate_recommendations(*args) == generate_recommendations(*args)
