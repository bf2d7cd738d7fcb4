"""AudienceContext and its parts; plain dataclasses serialized with to_dict()"""

from dataclasses import dataclass, field, asdict
from typing import Dict, Any, List, Optional


@dataclass
class DataSource:
    platform: str
    connected: bool
    last_synced: Optional[str]
    data_quality: str  # high | medium | low
    coverage_score: int
    account_info: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


@dataclass
class AudienceSummary:
    total_reach: int = 0
    total_audiences: int = 0
    top_platforms: List[Dict[str, Any]] = field(default_factory=list)
    age_distribution: Dict[str, int] = field(default_factory=dict)
    gender_split: Dict[str, int] = field(default_factory=dict)
    geographic_concentration: Dict[str, int] = field(default_factory=dict)
    behavioral_traits: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_reach': self.total_reach,
            'total_audiences': self.total_audiences,
            'top_platforms': self.top_platforms,
            'demographics': {
                'age_distribution': self.age_distribution,
                'gender_split': self.gender_split,
                'geographic_concentration': self.geographic_concentration,
            },
            'behavioral_traits': self.behavioral_traits,
        }


@dataclass
class CohortSegment:
    name: str
    size: int
    platforms: List[str]
    characteristics: List[str]
    performance_score: float
    growth_trend: str
    conversion_rate: Optional[float] = None


@dataclass
class PlatformOverlap:
    platforms: List[str]
    overlap_percentage: float
    shared_characteristics: List[str]


@dataclass
class CohortAnalysis:
    high_value_segments: List[CohortSegment] = field(default_factory=list)
    emerging_segments: List[CohortSegment] = field(default_factory=list)
    declining_segments: List[CohortSegment] = field(default_factory=list)
    cross_platform_overlap: List[PlatformOverlap] = field(default_factory=list)


@dataclass
class PlatformEfficiency:
    platform: str
    cpc: float
    ctr: float
    roas: float


@dataclass
class PerformanceMetrics:
    efficiency_by_platform: List[PlatformEfficiency] = field(default_factory=list)
    top_converting_cohorts: List[Dict[str, Any]] = field(default_factory=list)
    top_sources: List[Dict[str, Any]] = field(default_factory=list)
    most_efficient_channels: List[str] = field(default_factory=list)
    budget_recommendations: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'efficiency_by_platform': [asdict(e) for e in self.efficiency_by_platform],
            'top_converting_cohorts': self.top_converting_cohorts,
            'attribution_insights': {'top_sources': self.top_sources},
            'cost_efficiency': {
                'most_efficient_channels': self.most_efficient_channels,
                'budget_recommendations': self.budget_recommendations,
            },
        }


@dataclass
class UntappedSegment:
    segment: str
    potential_reach: int
    similarity_score: float
    recommended_platforms: List[str]


@dataclass
class ICPInsights:
    demographics: Dict[str, Any] = field(default_factory=dict)
    behaviors: List[str] = field(default_factory=list)
    interests: List[str] = field(default_factory=list)
    platforms: List[str] = field(default_factory=list)
    untapped_segments: List[UntappedSegment] = field(default_factory=list)
    expansion_geographic: List[str] = field(default_factory=list)
    expansion_demographic: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'current_icp': {
                'demographics': self.demographics,
                'behaviors': self.behaviors,
                'interests': self.interests,
                'platforms': self.platforms,
            },
            'untapped_segments': [asdict(s) for s in self.untapped_segments],
            'expansion_opportunities': {
                'geographic': self.expansion_geographic,
                'demographic': self.expansion_demographic,
            },
        }


@dataclass
class Recommendation:
    type: str  # targeting | budget | platform
    priority: str
    title: str
    description: str
    expected_impact: str
    required_platforms: List[str]
    confidence_score: float
    implementation_steps: List[str]


@dataclass
class AudienceContext:
    user_id: str
    timestamp: str
    data_sources: List[DataSource]
    audience_summary: AudienceSummary
    cohort_analysis: CohortAnalysis
    performance_metrics: PerformanceMetrics
    icp_insights: ICPInsights
    recommendations: List[Recommendation] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'user_id': self.user_id,
            'timestamp': self.timestamp,
            'data_sources': [asdict(source) for source in self.data_sources],
            'audience_summary': self.audience_summary.to_dict(),
            'cohort_analysis': asdict(self.cohort_analysis),
            'performance_metrics': self.performance_metrics.to_dict(),
            'icp_insights': self.icp_insights.to_dict(),
            'recommendations': [asdict(r) for r in self.recommendations],
        }
