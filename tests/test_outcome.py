"""Tests for turn outcome arithmetic."""

from childsim.state.schema import ChildProfile, InitialScenario, Option, PlayerProfile, WealthTier
from childsim.systems.outcome import apply_choice, clamp, initial_levels, passive_recovery


def option(finance=0, marital=0, recovery=False):
    return Option(id="A", text="x", finance_delta=finance, marital_delta=marital, is_recovery=recovery)


def scenario(**kwargs):
    return InitialScenario(
        player=PlayerProfile(),
        child=ChildProfile(name="Kim"),
        **kwargs,
    )


class TestClamp:
    """Test clamp."""

    def test_bounds(self):
        """Values are held to [0, 10]."""
        assert clamp(-3) == 0
        assert clamp(14) == 10
        assert clamp(6) == 6


class TestApplyChoice:
    """Test apply_choice rules."""

    def test_plain_deltas(self):
        """Deltas apply to both counters."""
        delta = apply_choice(5, 5, 8, option(finance=2, marital=-1))
        assert (delta.finance, delta.marital) == (7, 4)
        assert delta.finance_change == 2
        assert delta.marital_change == -1

    def test_grace_ignores_negative_finance_when_young(self):
        """Age five and under never loses money."""
        delta = apply_choice(5, 5, 5, option(finance=-3))
        assert delta.finance == 5
        assert delta.grace_applied

    def test_grace_ends_after_five(self):
        """From age six the loss applies."""
        delta = apply_choice(5, 5, 6, option(finance=-3))
        assert delta.finance == 2
        assert not delta.grace_applied

    def test_grace_keeps_gains(self):
        """Positive deltas apply during the grace period."""
        assert apply_choice(5, 5, 2, option(finance=2)).finance == 7

    def test_clamped(self):
        """Results never leave [0, 10]."""
        delta = apply_choice(9, 1, 10, option(finance=5, marital=-4))
        assert delta.finance == 10
        assert delta.marital == 0

    def test_bankruptcy(self):
        """Finance reaching zero marks bankruptcy."""
        delta = apply_choice(2, 5, 10, option(finance=-3))
        assert delta.finance == 0
        assert delta.is_bankrupt

    def test_recovery_floor(self):
        """A recovery option out of bankruptcy lands at least at 3."""
        delta = apply_choice(0, 5, 10, option(finance=0, recovery=True), is_bankrupt=True)
        assert delta.finance == 3
        assert delta.recovered
        assert not delta.is_bankrupt

    def test_recovery_bonus(self):
        """A strong recovery gets +2 on top."""
        delta = apply_choice(0, 5, 10, option(finance=4, recovery=True), is_bankrupt=True)
        assert delta.finance == 6

    def test_recovery_only_when_bankrupt(self):
        """The recovery tag does nothing for a solvent family."""
        delta = apply_choice(5, 5, 10, option(finance=1, recovery=True))
        assert delta.finance == 6
        assert not delta.recovered

    def test_single_parent_on_zero_marital(self):
        """Marital reaching zero makes the parent single."""
        delta = apply_choice(5, 1, 10, option(marital=-2))
        assert delta.is_single_parent

    def test_single_parent_is_sticky(self):
        """Once single, always single."""
        delta = apply_choice(5, 0, 10, option(marital=5), is_single_parent=True)
        assert delta.marital == 5
        assert delta.is_single_parent


class TestPassiveRecovery:
    """Test birthday finance recovery."""

    def test_not_before_six(self):
        """No recovery through age five."""
        assert passive_recovery(2, 5) == 2

    def test_recovers_below_seven(self):
        """Below 7, finance rises by one each birthday."""
        assert passive_recovery(0, 6) == 1
        assert passive_recovery(6, 9) == 7

    def test_no_recovery_at_seven(self):
        """At 7 or above nothing changes."""
        assert passive_recovery(7, 9) == 7
        assert passive_recovery(10, 9) == 10


class TestInitialLevels:
    """Test starting counters."""

    def test_defaults_to_midpoint(self):
        """No hints means 5 and 5."""
        assert initial_levels(scenario()) == (5, 5, False)

    def test_wealth_tier(self):
        """The wealth tier sets finance."""
        assert initial_levels(scenario(wealth_tier=WealthTier.POOR))[0] == 2
        assert initial_levels(scenario(wealth_tier=WealthTier.WEALTHY))[0] == 8

    def test_explicit_levels_win(self):
        """Explicit finance beats the tier."""
        levels = initial_levels(scenario(finance=9, marital=3, wealth_tier=WealthTier.POOR))
        assert levels == (9, 3, False)

    def test_single_parent_starts_at_zero_marital(self):
        """A single parent has no relationship to track."""
        assert initial_levels(scenario(marital=7, is_single_parent=True)) == (5, 0, True)
