"""Pipeline stages: LLM classification, profile scraping, message generation."""

from leadgen.stages.base import PipelineStage
from leadgen.stages.classification import (
    CategorizationStage,
    CategoryVerdict,
    LocationGateStage,
    LocationVerdict,
    RecruitmentDetectionStage,
    RecruitmentVerdict,
)
from leadgen.stages.message_generation import MessageGenerator, MessageResult
from leadgen.stages.profile_scraping import (
    CompanySnapshot,
    ProfileScrapingStage,
    ProfileSnapshot,
    normalize_company,
    normalize_profile,
)

__all__ = [
    "PipelineStage",
    "RecruitmentDetectionStage",
    "LocationGateStage",
    "CategorizationStage",
    "RecruitmentVerdict",
    "LocationVerdict",
    "CategoryVerdict",
    "ProfileScrapingStage",
    "ProfileSnapshot",
    "CompanySnapshot",
    "normalize_profile",
    "normalize_company",
    "MessageGenerator",
    "MessageResult",
]
