# Copyright 2026 50Hertz Transmission GmbH and Elia Transmission Belgium SA/NV
#
# This Source Code Form is subject to the terms of the Mozilla Public License, v. 2.0.
# If a copy of the MPL was not distributed with this file,
# you can obtain one at https://mozilla.org/MPL/2.0/.
# Mozilla Public License, version 2.0

"""Distribute the flow reduction needed on an overloaded branch over the generators feeding it.

The dispatch is proportional to the sensitivities: the most sensitive generator is the reference with coefficient 1, every
other generator gets its sensitivity relative to the reference. The reference variation is chosen such that the weighted
sum of the variations removes exactly the overload

    delta = sum_i(s_i * c_i) * reference_variation

A generator cannot be reduced below zero output. If its share exceeds its target P, it is capped at its target P and the
excess goes into a remaining pool, which is redistributed over the generators that still have headroom in up to
MAX_CASCADE_PASSES passes.

Generators with a zero or negative sensitivity are left out before the normalization instead of entering the
coefficient sum with a negative coefficient. Reducing their output would not relieve the branch, and keeping them out
means no generator ever gets a negative capping, so the headroom of every generator only shrinks over the iterations.
"""

from dataclasses import dataclass

from beartype.typing import Optional
from logbook import Logger

logger = Logger(__name__)

EPSILON = 1e-4
"""Remaining capping in MW below which the cascade stops"""

MAX_CASCADE_PASSES = 10
"""Hard bound on the redistribution passes, an unfinished cascade is accepted imprecision"""


@dataclass(frozen=True)
class DispatchResult:
    """The cappings computed for one overloaded branch"""

    cappings: dict[str, float]
    """The capping in MW per generator id"""

    variation: float
    """The total proposed reduction in MW before headroom capping"""

    remaining: float
    """Capping in MW that could not be placed on any generator"""

    cascade_passes: int
    """The number of redistribution passes that ran"""


def normalize_sensitivities(sensitivities: dict[str, float]) -> dict[str, float]:
    """Express the sensitivities relative to the most sensitive generator.

    Parameters
    ----------
    sensitivities : dict[str, float]
        The sensitivity per generator id

    Returns
    -------
    dict[str, float]
        The normalized coefficient per generator id, ordered by decreasing sensitivity. The first one is the reference
        with coefficient 1.
    """
    ordered = sorted(sensitivities.items(), key=lambda item: item[1], reverse=True)
    if not ordered:
        return {}
    reference = ordered[0][1]
    return {generator_id: sensitivity / reference for generator_id, sensitivity in ordered}


def _distribute(
    amount: float,
    coefficients: dict[str, float],
    weight_sum: float,
    target_p: dict[str, float],
    cappings: dict[str, float],
    eligible: list[str],
) -> float:
    """Place amount on the eligible generators, accumulating into cappings.

    Generators that hit their headroom are removed from eligible. Returns the excess that could not be placed.
    """
    reference_variation = abs(amount / weight_sum)
    excess = 0.0
    for generator_id in list(eligible):
        headroom = max(target_p[generator_id], 0.0)
        previous = cappings.get(generator_id, 0.0)
        proposed = coefficients[generator_id] * reference_variation
        if previous + proposed > headroom:
            excess += previous + proposed - headroom
            cappings[generator_id] = headroom
            eligible.remove(generator_id)
        else:
            cappings[generator_id] = previous + proposed
    return excess


def dispatch_capping(
    sensitivities: dict[str, float],
    delta: float,
    target_p: dict[str, float],
    max_cascade_passes: int = MAX_CASCADE_PASSES,
    epsilon: Optional[float] = None,
) -> DispatchResult:
    """Compute the capping of each generator needed to relieve an overloaded branch.

    Parameters
    ----------
    sensitivities : dict[str, float]
        The current sensitivity of the branch towards each generator
    delta : float
        The overload to remove, in the unit of the branch function (A for currents). The sign is ignored.
    target_p : dict[str, float]
        The current target P of each generator, bounding its capping
    max_cascade_passes : int
        Bound on the redistribution passes
    epsilon : Optional[float]
        Remaining capping below which the cascade stops, defaults to EPSILON

    Returns
    -------
    DispatchResult
        The cappings per generator. Generators with a non positive sensitivity can not relieve the branch by reducing
        their output and get no capping.
    """
    epsilon = EPSILON if epsilon is None else epsilon
    relieving = {generator_id: value for generator_id, value in sensitivities.items() if value > 0}
    if not relieving or delta == 0:
        return DispatchResult(cappings={}, variation=0.0, remaining=0.0, cascade_passes=0)

    coefficients = normalize_sensitivities(relieving)
    coefficient_sum = sum(relieving[generator_id] * coefficient for generator_id, coefficient in coefficients.items())
    reference_variation = abs(delta / coefficient_sum)
    variation = sum(coefficient * reference_variation for coefficient in coefficients.values())

    cappings: dict[str, float] = {}
    eligible = list(coefficients)
    remaining = _distribute(
        amount=delta,
        coefficients=coefficients,
        weight_sum=coefficient_sum,
        target_p=target_p,
        cappings=cappings,
        eligible=eligible,
    )

    passes = 0
    while remaining >= epsilon and eligible and passes < max_cascade_passes:
        passes += 1
        coefficients = normalize_sensitivities({generator_id: relieving[generator_id] for generator_id in eligible})
        eligible = list(coefficients)
        remaining = _distribute(
            amount=remaining,
            coefficients=coefficients,
            weight_sum=sum(coefficients.values()),
            target_p=target_p,
            cappings=cappings,
            eligible=eligible,
        )

    if remaining >= epsilon:
        logger.info(f"{remaining:.4f} MW of capping could not be placed after {passes} cascade passes")
    return DispatchResult(cappings=cappings, variation=variation, remaining=remaining, cascade_passes=passes)
