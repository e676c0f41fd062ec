# Copyright 2026 50Hertz Transmission GmbH and Elia Transmission Belgium SA/NV
#
# This Source Code Form is subject to the terms of the Mozilla Public License, v. 2.0.
# If a copy of the MPL was not distributed with this file,
# you can obtain one at https://mozilla.org/MPL/2.0/.
# Mozilla Public License, version 2.0

import pytest
from hostcap_capping_engine.capping_dispatcher import dispatch_capping, normalize_sensitivities


def test_normalize_sensitivities() -> None:
    coefficients = normalize_sensitivities({"gen2": 0.4, "gen1": 0.8, "gen3": 0.2})
    assert list(coefficients) == ["gen1", "gen2", "gen3"]
    assert coefficients == pytest.approx({"gen1": 1.0, "gen2": 0.5, "gen3": 0.25})
    assert normalize_sensitivities({}) == {}


def test_two_generators() -> None:
    result = dispatch_capping({"gen1": 0.8, "gen2": 0.4}, 30.0, {"gen1": 100.0, "gen2": 100.0})
    assert result.cappings == pytest.approx({"gen1": 30.0, "gen2": 15.0})
    assert result.variation == pytest.approx(45.0)
    assert result.remaining == 0.0
    assert result.cascade_passes == 0


@pytest.mark.parametrize(
    "sensitivities, delta",
    [
        ({"gen1": 0.8, "gen2": 0.4}, 30.0),
        ({"gen1": 0.3, "gen2": 0.25, "gen3": 0.05}, 12.5),
        ({"gen1": 1.2}, 7.0),
    ],
)
def test_flow_reduction_matches_overload(sensitivities: dict[str, float], delta: float) -> None:
    target_p = {generator_id: 1000.0 for generator_id in sensitivities}
    result = dispatch_capping(sensitivities, delta, target_p)
    flow_reduction = sum(sensitivities[generator_id] * capping for generator_id, capping in result.cappings.items())
    assert flow_reduction == pytest.approx(delta)
    # the cappings are proportional to the sensitivities
    reference = max(sensitivities, key=sensitivities.get)
    for generator_id, capping in result.cappings.items():
        assert capping / result.cappings[reference] == pytest.approx(sensitivities[generator_id] / sensitivities[reference])


def test_headroom_cascades_to_other_generators() -> None:
    result = dispatch_capping({"gen1": 0.8, "gen2": 0.4}, 30.0, {"gen1": 10.0, "gen2": 100.0})
    assert result.cappings["gen1"] == pytest.approx(10.0)
    assert result.cappings["gen2"] == pytest.approx(35.0)
    assert result.cascade_passes == 1
    assert result.remaining == pytest.approx(0.0)
    assert sum(result.cappings.values()) + result.remaining == pytest.approx(result.variation)


def test_capping_never_exceeds_target_p() -> None:
    target_p = {"gen1": 10.0, "gen2": 5.0}
    result = dispatch_capping({"gen1": 0.8, "gen2": 0.4}, 30.0, target_p)
    assert result.cappings == pytest.approx(target_p)
    assert result.remaining == pytest.approx(30.0)
    assert sum(result.cappings.values()) + result.remaining == pytest.approx(result.variation)


def test_negative_target_p_has_no_headroom() -> None:
    result = dispatch_capping({"gen1": 0.8, "gen2": 0.4}, 30.0, {"gen1": -5.0, "gen2": 100.0})
    assert result.cappings["gen1"] == 0.0
    assert result.cappings["gen2"] == pytest.approx(45.0)


def test_non_positive_sensitivities_are_not_capped() -> None:
    target_p = {"gen1": 100.0, "gen2": 100.0, "gen3": 100.0}
    result = dispatch_capping({"gen1": 0.8, "gen2": -0.4, "gen3": 0.0}, 30.0, target_p)
    assert set(result.cappings) == {"gen1"}
    assert result.cappings["gen1"] == pytest.approx(37.5)


def test_nothing_to_dispatch() -> None:
    assert dispatch_capping({}, 30.0, {}).cappings == {}
    assert dispatch_capping({"gen1": -0.1}, 30.0, {"gen1": 100.0}).variation == 0.0
    assert dispatch_capping({"gen1": 0.5}, 0.0, {"gen1": 100.0}).cappings == {}


def test_delta_sign_is_ignored() -> None:
    positive = dispatch_capping({"gen1": 0.8, "gen2": 0.4}, 30.0, {"gen1": 100.0, "gen2": 100.0})
    negative = dispatch_capping({"gen1": 0.8, "gen2": 0.4}, -30.0, {"gen1": 100.0, "gen2": 100.0})
    assert positive == negative


def test_cascade_is_bounded() -> None:
    sensitivities = {f"gen{i}": 1.0 - i * 0.05 for i in range(15)}
    target_p = {f"gen{i}": 1.0 + i * 0.1 for i in range(15)}
    result = dispatch_capping(sensitivities, 500.0, target_p, max_cascade_passes=3)
    assert result.cascade_passes <= 3
    for generator_id, capping in result.cappings.items():
        assert capping <= target_p[generator_id] + 1e-9
