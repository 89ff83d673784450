"""
Unit tests for payload validation helpers.
"""
import pytest

from reportgrid.models import Widget, WidgetLayout
from reportgrid.utils.exceptions import ValidationError, WidgetValidationError
from reportgrid.utils.validation import (
    coerce_layout,
    coerce_widget,
    normalize_update,
    shared_fields_changed,
    validate_config_name,
    validate_scope,
)


class TestValidateScope:
    """Test client/fiscal-year scope validation."""

    def test_valid_scope(self):
        assert validate_scope("acme-01", 2024) == ("acme-01", 2024)

    def test_numeric_string_year(self):
        assert validate_scope("acme", "2024") == ("acme", 2024)

    @pytest.mark.parametrize("client_id", ["", "../etc", "acme corp", None, "-leading"])
    def test_invalid_client_id(self, client_id):
        with pytest.raises(ValidationError):
            validate_scope(client_id, 2024)

    @pytest.mark.parametrize("year", ["twenty", None, 1800, 3000, 2024.5])
    def test_invalid_year(self, year):
        with pytest.raises(ValidationError):
            validate_scope("acme", year)


class TestCoerceWidget:
    """Test widget payload coercion."""

    def test_mapping_is_validated(self):
        widget = coerce_widget({"id": "w1", "type": "kpi", "title": "Revenue"})
        assert isinstance(widget, Widget)

    def test_widget_instance_is_copied(self):
        original = Widget(id="w1", type="kpi", title="Revenue", config={"metric": "sum"})
        copy = coerce_widget(original)

        copy.config["metric"] = "avg"
        assert original.config["metric"] == "sum"

    def test_missing_title_raises(self):
        with pytest.raises(WidgetValidationError) as exc_info:
            coerce_widget({"id": "w1", "type": "kpi"})
        assert "title" in str(exc_info.value)

    def test_non_mapping_raises(self):
        with pytest.raises(WidgetValidationError):
            coerce_widget(["w1", "kpi"])


class TestCoerceLayout:
    """Test layout binding to a widget."""

    def setup_method(self):
        self.widget = Widget(id="w1", type="kpi", title="Revenue", section_id="summary", data_source_id="tb")

    def test_shared_fields_come_from_widget(self):
        layout = coerce_layout({"x": 0, "y": 0, "w": 2, "h": 2, "sectionId": "other"}, self.widget)

        assert layout.i == "w1"
        assert layout.widget_id == "w1"
        assert layout.section_id == "summary"
        assert layout.data_source_id == "tb"

    def test_conflicting_i_raises(self):
        with pytest.raises(WidgetValidationError):
            coerce_layout({"i": "w2", "x": 0, "y": 0, "w": 2, "h": 2}, self.widget)

    def test_invalid_geometry_raises(self):
        with pytest.raises(WidgetValidationError):
            coerce_layout({"x": 0, "y": 0, "w": 0, "h": 2}, self.widget)

    def test_layout_instance(self):
        layout = WidgetLayout(i="w1", x=1, y=1, w=3, h=3, widget_id="w1")
        assert coerce_layout(layout, self.widget).section_id == "summary"


class TestNormalizeUpdate:
    """Test partial update normalization."""

    def test_camel_case_keys_are_converted(self):
        assert normalize_update("w1", {"sectionId": "s2", "title": "New"}) == {
            "section_id": "s2",
            "title": "New",
        }

    def test_unknown_field_raises(self):
        with pytest.raises(WidgetValidationError) as exc_info:
            normalize_update("w1", {"colour": "red"})
        assert "colour" in str(exc_info.value)

    def test_id_change_raises(self):
        with pytest.raises(WidgetValidationError):
            normalize_update("w1", {"id": "w2"})

    def test_same_id_is_allowed(self):
        assert normalize_update("w1", {"id": "w1"}) == {"id": "w1"}


class TestHelpers:

    def test_shared_fields_changed(self):
        before = Widget(id="w1", type="kpi", title="a", section_id="s1")
        assert shared_fields_changed(before, before.model_copy(update={"section_id": "s2"}))
        assert not shared_fields_changed(before, before.model_copy(update={"title": "b"}))

    def test_config_name(self):
        assert validate_config_name("  Year end  ") == "Year end"
        with pytest.raises(ValidationError):
            validate_config_name("   ")
        with pytest.raises(ValidationError):
            validate_config_name("x" * 201)
