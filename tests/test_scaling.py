from __future__ import annotations

import itertools
import unittest

from converters.scaling import (
    GIF_PROFILE,
    ScaleConstraints,
    even_size,
    scale_dimensions,
    video_profile,
)

TWITTER_LANDSCAPE = ScaleConstraints(max_width=1920, max_height=1200)
WITH_MIN = ScaleConstraints(max_width=1920, max_height=1200, min_width=4, min_height=4)


class TestScaleDownToMax(unittest.TestCase):
    def test_width_limited(self) -> None:
        r = scale_dimensions(2000, 1000, TWITTER_LANDSCAPE)
        self.assertEqual((r.width, r.height), (1920, 960))
        self.assertEqual(r.scale, 0.96)
        self.assertTrue(r.was_scaled)

    def test_height_limited(self) -> None:
        r = scale_dimensions(1000, 2000, TWITTER_LANDSCAPE)
        self.assertEqual((r.width, r.height), (600, 1200))
        self.assertEqual(r.scale, 0.6)
        self.assertTrue(r.was_scaled)

    def test_both_exceed(self) -> None:
        r = scale_dimensions(4898, 3265, TWITTER_LANDSCAPE)
        self.assertEqual((r.width, r.height), (1800, 1200))
        self.assertAlmostEqual(r.scale, 0.3675, places=4)

    def test_most_restrictive_axis_wins(self) -> None:
        r = scale_dimensions(3000, 2000, ScaleConstraints(max_width=1920, max_height=1080))
        # 2000/1080 = 1.85x vs 3000/1920 = 1.56x -> height decides
        self.assertEqual((r.width, r.height), (1620, 1080))
        self.assertAlmostEqual(r.scale, 0.54)

    def test_rounds_half_away_from_zero(self) -> None:
        # 5 * 0.5 = 2.5 -> 3 (banker's rounding would give 2)
        r = scale_dimensions(10, 5, ScaleConstraints(max_width=5, max_height=100))
        self.assertEqual((r.width, r.height), (5, 3))


class TestNoScaling(unittest.TestCase):
    def test_within_bounds(self) -> None:
        r = scale_dimensions(1000, 800, TWITTER_LANDSCAPE)
        self.assertEqual((r.width, r.height, r.scale, r.was_scaled), (1000, 800, 1.0, False))

    def test_exactly_at_max(self) -> None:
        r = scale_dimensions(1920, 1200, TWITTER_LANDSCAPE)
        self.assertEqual((r.width, r.height, r.scale, r.was_scaled), (1920, 1200, 1.0, False))


class TestMinimumClamp(unittest.TestCase):
    def test_tiny_image_clamps_to_min(self) -> None:
        r = scale_dimensions(1, 1, WITH_MIN)
        self.assertEqual((r.width, r.height), (4, 4))
        self.assertTrue(r.was_scaled)
        self.assertEqual(r.scale, 1.0)

    def test_zero_size_is_legal(self) -> None:
        r = scale_dimensions(0, 0, WITH_MIN)
        self.assertEqual((r.width, r.height), (4, 4))
        self.assertTrue(r.was_scaled)

    def test_zero_width_with_oversized_height(self) -> None:
        r = scale_dimensions(0, 2400, WITH_MIN)
        self.assertEqual((r.width, r.height), (4, 1200))
        self.assertEqual(r.scale, 0.5)

    def test_min_defaults_to_one(self) -> None:
        r = scale_dimensions(0, 10, TWITTER_LANDSCAPE)
        self.assertEqual((r.width, r.height), (1, 10))

    def test_clamp_does_not_change_scale(self) -> None:
        # max pass: 1/1000 -> 4 x 0 -> height clamped to 4, scale stays the max-pass value
        r = scale_dimensions(4000, 4, ScaleConstraints(max_width=4, max_height=100, min_width=4, min_height=4))
        self.assertEqual((r.width, r.height), (4, 4))
        self.assertEqual(r.scale, 0.001)

    def test_single_axis_clamp_breaks_aspect_ratio(self) -> None:
        # Known behaviour: each axis is clamped on its own, so a 2x100 source
        # becomes 4x100 instead of keeping its 1:50 ratio.
        r = scale_dimensions(2, 100, WITH_MIN)
        self.assertEqual((r.width, r.height), (4, 100))
        self.assertNotAlmostEqual(r.width / r.height, 2 / 100)


class TestScalingProperties(unittest.TestCase):
    SIZES = (1, 3, 4, 17, 640, 1199, 1200, 1201, 1919, 1920, 1921, 2048, 4000, 9999)
    CONSTRAINTS = (
        TWITTER_LANDSCAPE,
        WITH_MIN,
        GIF_PROFILE,
        ScaleConstraints(max_width=1920, max_height=1900, min_width=4, min_height=4),
        ScaleConstraints(max_width=7, max_height=5, min_width=2, min_height=3),
    )

    def test_output_within_bounds(self) -> None:
        for (w, h), c in itertools.product(itertools.product(self.SIZES, repeat=2), self.CONSTRAINTS):
            r = scale_dimensions(w, h, c)
            with self.subTest(w=w, h=h, c=c):
                self.assertLessEqual(r.width, c.max_width)
                self.assertLessEqual(r.height, c.max_height)
                self.assertGreaterEqual(r.width, c.min_width)
                self.assertGreaterEqual(r.height, c.min_height)

    def test_idempotent(self) -> None:
        for (w, h), c in itertools.product(itertools.product(self.SIZES, repeat=2), self.CONSTRAINTS):
            first = scale_dimensions(w, h, c)
            second = scale_dimensions(first.width, first.height, c)
            with self.subTest(w=w, h=h, c=c):
                self.assertEqual((second.width, second.height), (first.width, first.height))
                self.assertFalse(second.was_scaled)

    def test_aspect_ratio_kept_when_only_max_pass_fires(self) -> None:
        for w, h in [(3000, 2000), (4898, 3265), (2500, 1000), (1000, 2500), (8000, 4500)]:
            r = scale_dimensions(w, h, WITH_MIN)
            with self.subTest(w=w, h=h):
                # rounding each side moves the ratio by at most half a pixel
                self.assertAlmostEqual(r.width / r.height, w / h, delta=(w / h) / min(r.width, r.height))


class TestProfiles(unittest.TestCase):
    def test_gif_profile(self) -> None:
        self.assertEqual((GIF_PROFILE.max_width, GIF_PROFILE.max_height), (2048, 2048))
        self.assertEqual((GIF_PROFILE.min_width, GIF_PROFILE.min_height), (4, 4))

    def test_video_profile_depends_on_orientation(self) -> None:
        self.assertEqual(video_profile(3000, 2000).max_height, 1200)
        self.assertEqual(video_profile(2000, 3000).max_height, 1900)
        self.assertEqual(video_profile(2000, 2000).max_height, 1900)
        self.assertEqual(video_profile(3000, 2000).max_width, 1920)

    def test_landscape_video_scenario(self) -> None:
        r = scale_dimensions(3000, 2000, video_profile(3000, 2000))
        self.assertLessEqual(r.width, 1920)
        self.assertLessEqual(r.height, 1200)
        self.assertAlmostEqual(r.width / r.height, 1.5, places=2)


class TestEvenSize(unittest.TestCase):
    def test_rounds_odd_sides_down(self) -> None:
        self.assertEqual(even_size(1001, 667), (1000, 666))
        self.assertEqual(even_size(1920, 1199), (1920, 1198))
        self.assertEqual(even_size(100, 100), (100, 100))

    def test_never_below_minimum(self) -> None:
        self.assertEqual(even_size(5, 4), (4, 4))

    def test_stays_within_video_profile(self) -> None:
        for w, h in [(3001, 2001), (1001, 4001), (7, 9)]:
            c = video_profile(w, h)
            r = scale_dimensions(w, h, c)
            ew, eh = even_size(r.width, r.height)
            with self.subTest(w=w, h=h):
                self.assertEqual((ew % 2, eh % 2), (0, 0))
                self.assertLessEqual(ew, c.max_width)
                self.assertLessEqual(eh, c.max_height)
                self.assertGreaterEqual(min(ew, eh), c.min_width)


if __name__ == "__main__":
    unittest.main()
