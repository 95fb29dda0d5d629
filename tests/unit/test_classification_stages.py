"""
Unit tests for leadgen/stages/classification.py

Covers verdict normalization and the three LLM stages run against a
scripted completion client.
"""

import pytest
from pydantic import ValidationError as SchemaError

from leadgen.common.errors import ValidationError
from leadgen.stages.classification import (
    CategorizationStage,
    CategoryVerdict,
    LocationGateStage,
    LocationVerdict,
    LLMStage,
    RecruitmentDetectionStage,
    RecruitmentVerdict,
    split_positions,
)

from helpers.fakes import ScriptedLLM, make_item


class TestRecruitmentVerdict:
    def test_lowercase_verdict_normalized(self):
        verdict = RecruitmentVerdict.model_validate({"recrute_poste": "oui", "postes": "Data Engineer"})

        assert verdict.recrute_poste == "Oui"
        assert verdict.is_recruiting

    def test_more_than_three_positions_is_not_recruiting(self):
        """A long list of positions reads as a job board, not a targeted hire."""
        verdict = RecruitmentVerdict.model_validate({
            "recrute_poste": "Oui",
            "postes": "Dev, Ops, Data, Product",
        })

        assert verdict.recrute_poste == "Non"
        assert verdict.postes == ""

    def test_three_positions_kept(self):
        verdict = RecruitmentVerdict.model_validate({"recrute_poste": "Oui", "postes": "Dev, Ops, Data"})

        assert verdict.is_recruiting
        assert split_positions(verdict.postes) == ["Dev", "Ops", "Data"]

    def test_list_of_positions_joined(self):
        verdict = RecruitmentVerdict.model_validate({"recrute_poste": "Oui", "postes": ["Dev", "Ops"]})

        assert verdict.postes == "Dev, Ops"

    def test_unknown_verdict_rejected(self):
        with pytest.raises(SchemaError):
            RecruitmentVerdict.model_validate({"recrute_poste": "Peut-être"})


class TestLocationVerdict:
    def test_null_fields_become_empty(self):
        verdict = LocationVerdict.model_validate({"reponse": "Non", "langue": None, "raison": None})

        assert not verdict.passed
        assert verdict.langue == ""

    def test_missing_location_defaults(self):
        verdict = LocationVerdict.model_validate({"reponse": "OUI"})

        assert verdict.passed
        assert verdict.localisation_detectee == "non spécifiée"


class TestCategoryVerdict:
    def test_known_category_case_insensitive(self):
        verdict = CategoryVerdict.model_validate({"categorie": "tech"})

        assert verdict.categorie == "Tech"

    def test_unknown_category_becomes_autre(self):
        verdict = CategoryVerdict.model_validate({"categorie": "Logistique"})

        assert verdict.categorie == "Autre"

    def test_single_position_string_coerced(self):
        verdict = CategoryVerdict.model_validate({"categorie": "Data", "postes_selectionnes": "data engineer"})

        assert verdict.postes_selectionnes == ["data engineer"]

    def test_empty_category_rejected(self):
        with pytest.raises(SchemaError):
            CategoryVerdict.model_validate({"categorie": ""})


class TestRecruitmentDetectionStage:
    @pytest.mark.asyncio
    async def test_run_and_fields(self):
        llm = ScriptedLLM(recruitment=[{"recrute_poste": "Oui", "postes": "Développeur Python"}])
        stage = RecruitmentDetectionStage(llm)

        verdict = await stage.run(make_item())

        assert verdict.is_recruiting
        assert stage.to_fields(verdict) == {
            "stage1_is_recruiting": True,
            "stage1_positions": "Développeur Python",
        }
        kind, prompt = llm.calls[0]
        assert kind == "recruitment"
        assert "Marie Dupont" in prompt
        assert "Développeur Python à Paris" in prompt

    @pytest.mark.asyncio
    async def test_invalid_answer_raises_validation_error(self):
        """Partial or malformed answers are rejected, never half-applied."""
        llm = ScriptedLLM(recruitment=[{"postes": "Dev"}])

        with pytest.raises(ValidationError):
            await RecruitmentDetectionStage(llm).run(make_item())


class TestLocationGateStage:
    @pytest.mark.asyncio
    async def test_outside_zone(self):
        llm = ScriptedLLM(location=[{
            "reponse": "Non",
            "langue": "anglais",
            "localisation_detectee": "Berlin",
            "raison": "Poste basé en Allemagne",
        }])
        stage = LocationGateStage(llm)

        verdict = await stage.run(make_item(text="We are hiring a Python developer in Berlin."))

        fields = stage.to_fields(verdict)
        assert fields["stage2_passed"] is False
        assert fields["stage2_location"] == "Berlin"
        assert "Berlin" in llm.calls[0][1]


class TestCategorizationStage:
    @pytest.mark.asyncio
    async def test_prompt_lists_positions_and_categories(self):
        llm = ScriptedLLM(categorization=[{
            "categorie": "Tech",
            "postes_selectionnes": ["développeur python"],
            "justification": "Développement",
        }])
        stage = CategorizationStage(llm)
        item = make_item(stage1_positions="Développeur Python")

        verdict = await stage.run(item)

        assert stage.to_fields(verdict)["stage3_positions"] == ["développeur python"]
        prompt = llm.calls[0][1]
        assert "Développeur Python" in prompt
        assert "Executive Search" in prompt

    def test_parse_result_validates_callback_payload(self):
        stage = CategorizationStage(ScriptedLLM())

        with pytest.raises(ValidationError):
            stage.parse_result({"postes_selectionnes": []})


class TestLLMStage:
    def test_prompt_builder_is_required(self):
        class NoPromptStage(LLMStage):
            result_model = RecruitmentVerdict

            def to_fields(self, result):
                return {}

        with pytest.raises(TypeError, match="build_user_prompt"):
            NoPromptStage(ScriptedLLM())
