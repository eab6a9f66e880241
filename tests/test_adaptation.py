"""Tests for click adaptation."""

import numpy as np
import pytest

from pulseddm.adaptation import adapt_clicks

rng = np.random.default_rng(seed=42)


class TestAdaptClicks:
    """Tests for adapt_clicks function."""

    @pytest.mark.parametrize("cross", [False, True])
    def test_no_adaptation_is_exact(self, cross: bool) -> None:
        """Test that phi == 1 leaves every magnitude exactly 1."""
        left = np.sort(rng.uniform(0, 1, size=40))
        right = np.sort(rng.uniform(0, 1, size=25))

        La, Ra = adapt_clicks(1.0, 0.02, left, right, cross=cross)

        assert np.array_equal(La, np.ones(40))
        assert np.array_equal(Ra, np.ones(25))

    def test_first_click_unadapted(self) -> None:
        """Test that the first click of each stream has magnitude 1."""
        La, Ra = adapt_clicks(0.3, 0.05, np.array([0.1, 0.2]), np.array([0.15]))

        assert La[0] == 1.0
        assert Ra[0] == 1.0

    def test_two_click_closed_form(self) -> None:
        """Test the second click against 1 + (phi - 1) exp(-dt / tau)."""
        phi, tau = 0.4, 0.02
        La, _ = adapt_clicks(phi, tau, np.array([0.0, 0.01]), np.array([]))

        np.testing.assert_allclose(La[1], 1 + (phi - 1) * np.exp(-0.01 / tau))

    def test_recurrence_uses_adapted_magnitude(self) -> None:
        """Test that each click adapts from the previous adapted magnitude."""
        phi, tau = 0.5, 0.1
        times = np.array([0.0, 0.05, 0.08])

        La, _ = adapt_clicks(phi, tau, times, np.array([]))

        c2 = 1 + (phi - 1) * np.exp(-0.05 / tau)
        c3 = 1 + (phi * c2 - 1) * np.exp(-0.03 / tau)
        np.testing.assert_allclose(La, [1.0, c2, c3])

    def test_depression_recovers(self) -> None:
        """Test that widely spaced clicks recover almost fully."""
        La, _ = adapt_clicks(0.1, 0.005, np.array([0.0, 1.0]), np.array([]))

        np.testing.assert_allclose(La[1], 1.0, atol=1e-12)

    def test_facilitation(self) -> None:
        """Test that phi > 1 increases the magnitude of close clicks."""
        La, _ = adapt_clicks(1.2, 0.1, np.array([0.0, 0.01]), np.array([]))

        assert La[1] > 1.0

    def test_within_stream_ignores_other_side(self) -> None:
        """Test that without cross adaptation a right click does not depress a left one."""
        La, Ra = adapt_clicks(0.2, 0.05, np.array([0.0]), np.array([0.01]), cross=False)

        assert La[0] == 1.0
        assert Ra[0] == 1.0

    def test_cross_stream_depression(self) -> None:
        """Test that with cross adaptation the right click is depressed by the left one."""
        phi, tau = 0.2, 0.05
        La, Ra = adapt_clicks(phi, tau, np.array([0.0]), np.array([0.01]), cross=True)

        assert La[0] == 1.0
        np.testing.assert_allclose(Ra[0], 1 + (phi - 1) * np.exp(-0.01 / tau))

    def test_cross_stream_preserves_order(self) -> None:
        """Test that cross-adapted magnitudes are returned in each stream's order."""
        left = np.array([0.0, 0.02, 0.04])
        right = np.array([0.01, 0.03])

        La, Ra = adapt_clicks(0.5, 0.02, left, right, cross=True)
        merged, _ = adapt_clicks(0.5, 0.02, np.array([0.0, 0.01, 0.02, 0.03, 0.04]), np.array([]))

        np.testing.assert_allclose(La, merged[[0, 2, 4]])
        np.testing.assert_allclose(Ra, merged[[1, 3]])

    def test_simultaneous_clicks(self) -> None:
        """Test that a zero inter-click interval multiplies by phi."""
        La, _ = adapt_clicks(0.5, 0.02, np.array([0.1, 0.1]), np.array([]))

        np.testing.assert_allclose(La[1], 0.5)

    def test_stereo_click_zeroed(self) -> None:
        """Test that a simultaneous first pair is silenced when stereo=True."""
        La, Ra = adapt_clicks(1.0, 0.02, np.array([0.0, 0.1]), np.array([0.0]), stereo=True)

        assert La[0] == 0.0
        assert Ra[0] == 0.0
        assert La[1] == 1.0

    def test_empty_streams(self) -> None:
        """Test that empty streams give empty outputs."""
        La, Ra = adapt_clicks(0.5, 0.02, np.array([]), np.array([]), cross=True)

        assert La.shape == (0,)
        assert Ra.shape == (0,)

    def test_unsorted_clicks_raise_error(self) -> None:
        """Test that unsorted click times raise ValueError."""
        with pytest.raises(ValueError, match="sorted"):
            adapt_clicks(0.5, 0.02, np.array([0.2, 0.1]), np.array([]))

    def test_non_positive_tau_raises_error(self) -> None:
        """Test that tau_phi <= 0 raises ValueError."""
        with pytest.raises(ValueError, match="tau_phi"):
            adapt_clicks(0.5, 0.0, np.array([0.1]), np.array([0.2]))
