import threading

import pytest
from core.fallback import AttemptBudget, DataSource, ProviderChain, SourceOutcome
from core.models import AdminUnit, AttemptTrace, Coordinate, Outcome
from core.taxonomy import RiskLevel


class FakeSource(DataSource):
    """Records calls and returns a canned outcome."""

    def __init__(self, name, level=None, calls=None, note=None):
        self.name = name
        self.level = level
        self.calls = calls if calls is not None else []
        self.note = note

    def fetch(self, coordinate, budget, trace):
        self.calls.append(self.name)
        budget.take()
        trace.record(f"{self.name}:point:within", f"https://{self.name}", Outcome.NO_FEATURE)
        if self.level is None:
            return None
        return SourceOutcome(level=self.level, provider=self.name,
                             admin_unit=AdminUnit.TRACT, note=self.note)


@pytest.fixture
def coord():
    return Coordinate(36.97, -122.03)


def test_budget_take_until_exhausted():
    budget = AttemptBudget(2)
    assert budget.take()
    assert budget.take()
    assert not budget.take()
    assert budget.used == 2
    assert budget.remaining == 0
    assert budget.exhausted


def test_budget_honours_cancellation():
    cancel = threading.Event()
    budget = AttemptBudget(10, cancel)
    assert budget.take()
    cancel.set()
    assert budget.cancelled
    assert not budget.take()
    assert budget.used == 1


def test_first_usable_source_wins(coord):
    calls = []
    chain = ProviderChain([
        FakeSource("tract", RiskLevel.LOW, calls),
        FakeSource("county", RiskLevel.HIGH, calls),
    ])
    result = chain.resolve(coord, AttemptBudget(10))
    assert result.level is RiskLevel.LOW
    assert result.provider == "tract"
    assert calls == ["tract"]


def test_falls_through_in_order(coord):
    calls = []
    chain = ProviderChain([
        FakeSource("tract", None, calls),
        FakeSource("county", RiskLevel.UNDETERMINED, calls),
        FakeSource("mirror", RiskLevel.MODERATE, calls),
    ])
    result = chain.resolve(coord, AttemptBudget(10))
    assert calls == ["tract", "county", "mirror"]
    assert result.provider == "mirror"
    assert [a.step for a in result.trace] == [
        "tract:point:within", "county:point:within", "mirror:point:within",
    ]


def test_exhaustion_not_applicable_wins(coord):
    chain = ProviderChain([
        FakeSource("raster", RiskLevel.NOT_APPLICABLE, note="No pixel value"),
        FakeSource("mirror", RiskLevel.UNDETERMINED),
    ])
    result = chain.resolve(coord, AttemptBudget(10))
    assert result.level is RiskLevel.NOT_APPLICABLE
    assert result.provider is None
    assert result.note == "No pixel value"
    assert len(result.trace) == 2


def test_exhaustion_undetermined(coord):
    chain = ProviderChain([FakeSource("tract"), FakeSource("county")])
    result = chain.resolve(coord, AttemptBudget(10))
    assert result.level is RiskLevel.UNDETERMINED
    assert result.provider is None
    assert result.note == "No usable rating from any source."


def test_exhausted_budget_skips_sources(coord):
    calls = []
    budget = AttemptBudget(1)
    budget.take()
    chain = ProviderChain([FakeSource("tract", RiskLevel.HIGH, calls)])
    result = chain.resolve(coord, budget, AttemptTrace())
    assert calls == []
    assert result.level is RiskLevel.UNDETERMINED


def test_shared_budget_draws_from_parent():
    parent = AttemptBudget(5)
    child = parent.share(3)
    assert [child.take() for _ in range(4)] == [True, True, True, False]
    assert parent.used == 3

    sibling = parent.share(3)
    assert [sibling.take() for _ in range(3)] == [True, True, False]
    assert parent.exhausted


def test_timeout_streak_exhausts_a_share():
    share = AttemptBudget(10).share(10, timeout_limit=2)
    share.take()
    share.record(Outcome.TIMEOUT)
    share.take()
    share.record(Outcome.OK)
    share.take()
    share.record(Outcome.TIMEOUT)
    assert not share.exhausted
    share.take()
    share.record(Outcome.TIMEOUT)
    assert share.timed_out
    assert not share.take()


class GreedySource(DataSource):
    """Spends every attempt it is given and finds nothing."""

    def __init__(self, name):
        self.name = name
        self.spent = 0

    def fetch(self, coordinate, budget, trace):
        while budget.take():
            self.spent += 1
        return None


def test_each_source_gets_its_own_share(coord):
    first, second = GreedySource("agol"), GreedySource("usfs")
    chain = ProviderChain([first, second, FakeSource("last", RiskLevel.LOW)], source_attempts=4)
    budget = AttemptBudget(20)

    result = chain.resolve(coord, budget)
    assert (first.spent, second.spent) == (4, 4)
    assert result.provider == "last"
    assert budget.used == 9


def test_facade_cap_still_binds(coord):
    first, second = GreedySource("agol"), GreedySource("usfs")
    chain = ProviderChain([first, second], source_attempts=4)
    budget = AttemptBudget(6)

    chain.resolve(coord, budget)
    assert (first.spent, second.spent) == (4, 2)
