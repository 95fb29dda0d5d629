"""
LLM classification stages.

1. Recruitment detection: is the author hiring for their own company?
2. Location gate: is the position in France, Belgium, Switzerland,
   Luxembourg or Monaco (French posts pass by default)?
3. Categorization: one job category plus normalized position titles.

LLM answers are validated with strict pydantic models; anything that does
not validate raises ValidationError instead of being partially accepted.
"""

import logging
from abc import abstractmethod
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from leadgen.common.json_utils import validate_payload
from leadgen.common.llm_client import LLMClient
from leadgen.common.models import WorkItem
from leadgen.common.workflow_events import Stage
from leadgen.stages.base import PipelineStage
from leadgen.stages.prompts import (
    CATEGORIZATION_SYSTEM_PROMPT,
    CATEGORIZATION_USER_TEMPLATE,
    JOB_CATEGORIES,
    LOCATION_SYSTEM_PROMPT,
    LOCATION_USER_TEMPLATE,
    RECRUITMENT_SYSTEM_PROMPT,
    RECRUITMENT_USER_TEMPLATE,
)

logger = logging.getLogger(__name__)

MAX_POSITIONS = 3


def _normalize_verdict(value: Any) -> Any:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "oui":
            return "Oui"
        if lowered == "non":
            return "Non"
    return value


def split_positions(positions: Optional[str]) -> List[str]:
    """'a, b ,c' -> ['a', 'b', 'c']"""
    if not positions:
        return []
    return [p.strip() for p in positions.split(",") if p.strip()]


# ===== Result models =====

class RecruitmentVerdict(BaseModel):
    """Stage 1 answer."""
    recrute_poste: Literal["Oui", "Non"]
    postes: str = ""

    @field_validator("recrute_poste", mode="before")
    @classmethod
    def normalize_verdict(cls, v):
        return _normalize_verdict(v)

    @field_validator("postes", mode="before")
    @classmethod
    def join_positions(cls, v):
        if v is None:
            return ""
        if isinstance(v, list):
            return ", ".join(str(p) for p in v)
        return v

    @model_validator(mode="after")
    def reject_position_lists(self):
        # More than three distinct positions is a job board, not a targeted hire
        if len(split_positions(self.postes)) > MAX_POSITIONS:
            self.recrute_poste = "Non"
            self.postes = ""
        return self

    @property
    def is_recruiting(self) -> bool:
        return self.recrute_poste == "Oui"


class LocationVerdict(BaseModel):
    """Stage 2 answer."""
    reponse: Literal["Oui", "Non"]
    langue: str = ""
    localisation_detectee: str = "non spécifiée"
    raison: str = ""

    @field_validator("reponse", mode="before")
    @classmethod
    def normalize_verdict(cls, v):
        return _normalize_verdict(v)

    @field_validator("langue", "localisation_detectee", "raison", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return "" if v is None else v

    @property
    def passed(self) -> bool:
        return self.reponse == "Oui"


class CategoryVerdict(BaseModel):
    """Stage 3 answer."""
    categorie: str = Field(..., min_length=1)
    postes_selectionnes: List[str] = Field(default_factory=list)
    justification: str = ""

    @field_validator("categorie")
    @classmethod
    def known_category(cls, v):
        for category in JOB_CATEGORIES:
            if v.strip().lower() == category.lower():
                return category
        logger.warning(f"Unknown category '{v}', using 'Autre'")
        return "Autre"

    @field_validator("postes_selectionnes", mode="before")
    @classmethod
    def coerce_positions(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [v] if v.strip() else []
        return v

    @field_validator("justification", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return "" if v is None else v


# ===== Stages =====

class LLMStage(PipelineStage):
    """Stage backed by one JSON completion."""

    system_prompt: str

    def __init__(self, llm: Optional[LLMClient] = None):
        self.llm = llm or LLMClient()

    @abstractmethod
    def build_user_prompt(self, item: WorkItem) -> str:
        """Fill the stage's user template from the work item."""

    async def run(self, item: WorkItem, **kwargs: Any):
        payload = await self.llm.complete(self.system_prompt, self.build_user_prompt(item))
        return validate_payload(payload, self.result_model, source=f"{self.name.value} LLM response")


class RecruitmentDetectionStage(LLMStage):
    name = Stage.RECRUITMENT_DETECTION
    result_model = RecruitmentVerdict
    system_prompt = RECRUITMENT_SYSTEM_PROMPT

    def build_user_prompt(self, item: WorkItem) -> str:
        return RECRUITMENT_USER_TEMPLATE.format(
            title=item.title or "Aucun titre",
            text=item.text,
            author=item.author_name or "Inconnu",
        )

    def to_fields(self, result: RecruitmentVerdict) -> Dict[str, Any]:
        return {
            "stage1_is_recruiting": result.is_recruiting,
            "stage1_positions": result.postes,
        }


class LocationGateStage(LLMStage):
    name = Stage.LOCATION_GATE
    result_model = LocationVerdict
    system_prompt = LOCATION_SYSTEM_PROMPT

    def build_user_prompt(self, item: WorkItem) -> str:
        return LOCATION_USER_TEMPLATE.format(title=item.title or "", text=item.text).strip()

    def to_fields(self, result: LocationVerdict) -> Dict[str, Any]:
        return {
            "stage2_passed": result.passed,
            "stage2_language": result.langue,
            "stage2_location": result.localisation_detectee,
            "stage2_reason": result.raison,
        }


class CategorizationStage(LLMStage):
    name = Stage.CATEGORIZATION
    result_model = CategoryVerdict
    system_prompt = CATEGORIZATION_SYSTEM_PROMPT

    def build_user_prompt(self, item: WorkItem) -> str:
        return CATEGORIZATION_USER_TEMPLATE.format(
            positions=item.stage1_positions or "(aucun poste indiqué)",
            categories=", ".join(JOB_CATEGORIES),
            title=item.title or "",
            text=item.text,
        )

    def to_fields(self, result: CategoryVerdict) -> Dict[str, Any]:
        return {
            "stage3_category": result.categorie,
            "stage3_positions": result.postes_selectionnes,
            "stage3_justification": result.justification,
        }
