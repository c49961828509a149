from __future__ import annotations

import unittest
from datetime import date, datetime

import visual_data  # noqa: F401

from forcegraph.colors import ColorContext, interpolate_weight_color, solid_color
from forcegraph.formatting import BLANK_LABEL, format_number, format_value, truncate
from forcegraph.settings import FormatSettings, settings_keys


class FormatSettingsTests(unittest.TestCase):
    def test_missing_payload_gives_defaults(self) -> None:
        for objects in (None, {}, {"labels": None}, "nonsense"):
            settings = FormatSettings.from_objects(objects)
            self.assertEqual(settings, FormatSettings())
        settings = FormatSettings()
        self.assertTrue(settings.animation.show)
        self.assertTrue(settings.labels.show)
        self.assertEqual(settings.labels.color, "#777777")
        self.assertFalse(settings.links.show_label)
        self.assertIsNone(settings.links.decimal_places)
        self.assertFalse(settings.nodes.display_image)
        self.assertEqual(settings.size.charge, -15.0)

    def test_parses_known_values(self) -> None:
        settings = FormatSettings.from_objects(
            {
                "labels": {"show": False, "color": {"solid": {"color": "#010203"}}, "fontSize": 12},
                "links": {"showLabel": True, "decimalPlaces": 2, "displayUnits": 1000},
                "nodes": {"displayImage": True, "imageExt": ".svg"},
                "size": {"charge": -40, "boundedByBox": True},
            }
        )
        self.assertFalse(settings.labels.show)
        self.assertEqual(settings.labels.color, "#010203")
        self.assertEqual(settings.labels.font_size_px, 16.0)
        self.assertTrue(settings.links.show_label)
        self.assertEqual(settings.links.decimal_places, 2)
        self.assertEqual(settings.links.display_units, 1000)
        self.assertTrue(settings.nodes.display_image)
        self.assertEqual(settings.nodes.image_ext, ".svg")
        self.assertEqual(settings.size.charge, -40.0)
        self.assertTrue(settings.size.bounded_by_box)

    def test_malformed_values_fall_back_and_warn(self) -> None:
        with self.assertLogs("forcegraph.settings", level="WARNING") as captured:
            settings = FormatSettings.from_objects(
                {
                    "labels": {"show": "yes", "fontSize": float("nan")},
                    "links": {"displayUnits": 7, "colorLink": "rainbow"},
                    "nodes": {"fill": 42},
                }
            )
        self.assertEqual(settings, FormatSettings())
        self.assertEqual(len(captured.records), 5)

    def test_numbers_are_clamped(self) -> None:
        settings = FormatSettings.from_objects(
            {"size": {"charge": -500}, "links": {"decimalPlaces": 99}, "labels": {"fontSize": 0}}
        )
        self.assertEqual(settings.size.charge, -100.0)
        self.assertEqual(settings.links.decimal_places, 10)
        self.assertEqual(settings.labels.font_size, 1.0)

    def test_settings_keys_are_qualified(self) -> None:
        keys = settings_keys()
        self.assertIn("labels.fontSize", keys)
        self.assertIn("links.decimalPlaces", keys)
        self.assertIn("nodes.displayImage", keys)
        self.assertEqual(len(keys), len(set(keys)))


class FormattingTests(unittest.TestCase):
    def test_display_units_and_decimal_places(self) -> None:
        self.assertEqual(format_number(200, display_units=1000, decimal_places=2), "0.20K")
        self.assertEqual(format_number(1_500_000, display_units=1_000_000, decimal_places=1), "1.5M")
        self.assertEqual(format_number(1234.5, display_units=1, decimal_places=0), "1234")
        self.assertEqual(format_number(42.0), "42")

    def test_auto_display_units_pick_by_magnitude(self) -> None:
        self.assertEqual(format_number(2500), "2.5K")
        self.assertEqual(format_number(3_000_000_000), "3bn")
        self.assertEqual(format_number(0.25), "0.25")

    def test_dates_never_leak_raw_text(self) -> None:
        stamp = datetime(2020, 1, 2, 3, 4, 5)
        self.assertEqual(format_value(stamp), "01/02/2020 03:04:05")
        self.assertEqual(format_value(date(2020, 1, 2)), "01/02/2020")
        self.assertEqual(format_value(stamp, "%Y"), "2020")
        self.assertNotEqual(format_value(stamp), str(stamp))

    def test_other_values(self) -> None:
        self.assertEqual(format_value(None), BLANK_LABEL)
        self.assertEqual(format_value(True), "True")
        self.assertEqual(format_value("plain"), "plain")
        self.assertEqual(format_value(1500, display_units=1000), "1.5K")

    def test_truncate(self) -> None:
        self.assertEqual(truncate("abcdef", 3), "abc...")
        self.assertEqual(truncate("abc", 3), "abc")
        self.assertEqual(truncate("abc", 0), "abc")


class ColorTests(unittest.TestCase):
    def test_palette_assignment_is_stable(self) -> None:
        context = ColorContext()
        first = context.color_for("a")
        self.assertEqual(context.color_for("b"), context.palette[1])
        self.assertEqual(context.color_for("a"), first)

    def test_high_contrast_uses_foreground(self) -> None:
        context = ColorContext.high_contrast("#000000", "#ffff00")
        self.assertEqual(context.color_for("a"), "#ffff00")

    def test_weight_ramp_and_solid_colors(self) -> None:
        self.assertEqual(interpolate_weight_color(0.0), "#dddddd")
        self.assertEqual(interpolate_weight_color(2.0), "#333333")
        self.assertEqual(solid_color({"solid": {"color": "#abcdef"}}), "#abcdef")
        self.assertIsNone(solid_color(""))
        self.assertIsNone(solid_color({"solid": {}}))


if __name__ == "__main__":
    unittest.main()
