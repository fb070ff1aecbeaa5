"""Tests for variable expansion and per-job config snapshots."""

import pytest

from bvg.errors import ValidationError
from bvg.schemas.models import TEXT_ONLY_SENTINEL, BaseConfig, GenerationMode, Variable
from bvg.variables import build_job_config, default_avatar_name, expand, substitute


class TestExpand:
    def test_cross_product_order(self):
        combos = expand([
            Variable(name="city", values=["Austin", "Denver"]),
            Variable(name="avatar_age", values=["30s", "50s", "60s"]),
        ])
        assert len(combos) == 6
        assert combos[0] == {"city": "Austin", "avatar_age": "30s"}
        assert combos[1] == {"city": "Austin", "avatar_age": "50s"}
        assert combos[3] == {"city": "Denver", "avatar_age": "30s"}

    def test_every_combination_has_every_variable(self):
        combos = expand([
            Variable(name="a", values=["1", "2"]),
            Variable(name="b", values=["x"]),
            Variable(name="c", values=["p", "q"]),
        ])
        assert len(combos) == 4
        assert all(set(c) == {"a", "b", "c"} for c in combos)
        assert len({tuple(sorted(c.items())) for c in combos}) == 4

    def test_no_variables_yields_one_empty_combination(self):
        assert expand([]) == [{}]

    def test_variable_without_values_is_ignored(self):
        combos = expand([Variable(name="city", values=[]), Variable(name="age", values=["30s"])])
        assert combos == [{"age": "30s"}]

    def test_duplicate_values_collapse(self):
        assert expand([Variable(name="city", values=["Austin", "Austin", "Reno"])]) == [
            {"city": "Austin"},
            {"city": "Reno"},
        ]

    def test_duplicate_names_rejected(self):
        with pytest.raises(ValidationError):
            expand([Variable(name="city", values=["a"]), Variable(name="city", values=["b"])])

    def test_expansion_is_stable(self):
        variables = [Variable(name="a", values=["1", "2"]), Variable(name="b", values=["x", "y"])]
        assert expand(variables) == expand(variables)


class TestSubstitute:
    def test_known_placeholders_replaced(self):
        assert substitute("Sell homes in {city}", {"city": "Austin"}) == "Sell homes in Austin"

    def test_unknown_placeholders_left_alone(self):
        assert substitute("{greeting} from {city}", {"city": "Reno"}) == "{greeting} from Reno"

    def test_empty_template(self):
        assert substitute("", {"city": "Reno"}) == ""


class TestBuildJobConfig:
    def test_overrides_and_snapshot(self):
        base = BaseConfig(industry="Retail", city="Boston", story_idea="Open in {city}", number_of_scenes=3)
        combo = {"city": "Austin", "industry_override": "Real Estate", "avatar_age": "40s"}
        config = build_job_config(combo, base)
        assert config.city == "Austin"
        assert config.industry == "Real Estate"
        assert config.story_idea == "Open in Austin"
        assert config.number_of_scenes == 3
        assert config.variable_values == combo

    def test_text_only_without_image(self):
        config = build_job_config({}, BaseConfig())
        assert config.image_url == TEXT_ONLY_SENTINEL
        assert config.generation_mode == GenerationMode.TEXT_2_VIDEO
        assert config.reference_image is None

    def test_reference_mode_with_image(self):
        config = build_job_config({"image_url": "https://img.example.com/a.png"}, BaseConfig())
        assert config.generation_mode == GenerationMode.REFERENCE_2_VIDEO
        assert config.reference_image == "https://img.example.com/a.png"

    def test_default_avatar_name(self):
        assert default_avatar_name({"avatar_age": "30s", "avatar_gender": "female"}) == "30s female Professional"
        assert default_avatar_name({}) == "Professional"
        assert build_job_config({"avatar_name": "Maya"}, BaseConfig()).avatar_name == "Maya"

    def test_base_config_is_not_mutated(self):
        base = BaseConfig(city="Boston", story_idea="In {city}")
        build_job_config({"city": "Austin"}, base)
        assert base.city == "Boston"
        assert base.story_idea == "In {city}"
