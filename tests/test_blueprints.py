"""Blueprint models and expansion."""

import pytest
from pydantic import ValidationError

from blueprints import (
    Audience,
    Budget,
    Creative,
    ExpansionParams,
    calculate_expansion_size,
    create_creative_variant,
    expand_blueprint,
    load_blueprint,
)


class TestLoadBlueprint:
    def test_platform_is_uppercased(self, blueprint_data):
        bp = load_blueprint(blueprint_data)
        assert bp.platform == "META"

    def test_camel_case_aliases_populate_fields(self, blueprint_data):
        bp = load_blueprint(blueprint_data)
        assert bp.config.target_audience.locations == ["US", "CA"]
        assert bp.config.creative.image_url == "https://cdn.example/shoe.jpg"
        assert bp.config.creative.link_url == "https://shop.example"

    def test_blueprint_is_immutable(self, blueprint_data):
        bp = load_blueprint(blueprint_data)
        with pytest.raises(ValidationError):
            bp.name = "other"


class TestExpansion:
    def test_single_value_prop_and_primary_audience(self, blueprint_data):
        params = expand_blueprint(load_blueprint(blueprint_data).config)
        assert params.value_props == ["Save 20%"]
        assert len(params.audiences) == 1
        audience = params.audiences[0]
        assert audience.name == "Primary Audience"
        assert (audience.age_min, audience.age_max) == (25, 45)
        assert audience.locations == ["US", "CA"]

    def test_budget_is_daily_in_major_units(self, blueprint_data):
        params = expand_blueprint(load_blueprint(blueprint_data).config)
        assert params.budget == Budget(amount=50, type="DAILY")

    def test_expansion_is_deterministic(self, blueprint_data):
        config = load_blueprint(blueprint_data).config
        assert expand_blueprint(config) == expand_blueprint(config)

    def test_default_age_range_when_missing(self, blueprint_data):
        blueprint_data["config"]["targetAudience"].pop("age")
        params = expand_blueprint(load_blueprint(blueprint_data).config)
        assert (params.audiences[0].age_min, params.audiences[0].age_max) == (18, 65)

    def test_expansion_needs_value_props_and_audiences(self):
        audience = Audience(name="A", age_min=18, age_max=65)
        with pytest.raises(ValidationError):
            ExpansionParams(value_props=[], audiences=[audience], budget=Budget(amount=1), creative=Creative())
        with pytest.raises(ValidationError):
            ExpansionParams(value_props=["x"], audiences=[], budget=Budget(amount=1), creative=Creative())

    def test_expansion_size(self):
        audiences = [Audience(name=n, age_min=18, age_max=65) for n in ("A", "B", "C")]
        params = ExpansionParams(
            value_props=["x", "y"], audiences=audiences, budget=Budget(amount=1), creative=Creative()
        )
        assert calculate_expansion_size(params) == {"campaigns": 2, "adsets": 6, "ads": 6}


class TestCreativeVariant:
    def test_prefixes_headline_and_description(self):
        base = Creative(headline="H", description="D", call_to_action="Shop Now")
        variant = create_creative_variant(base, "VP")
        assert variant.headline == "VP - H"
        assert variant.description == "VP: D"
        assert variant.call_to_action == "Shop Now"

    def test_base_creative_is_untouched(self):
        base = Creative(headline="H", description="D")
        create_creative_variant(base, "VP")
        assert base.headline == "H"
        assert base.description == "D"

    def test_extra_fields_are_preserved(self):
        base = Creative.model_validate({"headline": "H", "description": "D", "videoUrl": "https://v.example/x.mp4"})
        variant = create_creative_variant(base, "VP")
        assert variant.model_extra == {"videoUrl": "https://v.example/x.mp4"}
