from __future__ import annotations

from collections import Counter

import pytest

from notecal.models import AttemptState
from notecal.oauth_flow import AuthorizationAttempt, new_correlator

SAMPLES = 2000


def test_correlators_are_distinct_fixed_length_hex() -> None:
    values = [new_correlator() for _ in range(SAMPLES)]
    assert len(set(values)) == SAMPLES
    assert all(len(v) == 64 for v in values)
    assert all(set(v) <= set("0123456789abcdef") for v in values)


def test_correlator_bits_look_uniform() -> None:
    values = [new_correlator() for _ in range(SAMPLES)]

    ones = sum(bin(int(v, 16)).count("1") for v in values)
    total_bits = SAMPLES * 256
    # Standard deviation of the ones ratio is about 0.0007 here.
    assert abs(ones / total_bits - 0.5) < 0.01

    digits = Counter("".join(values))
    expected = SAMPLES * 64 / 16
    chi_square = sum((digits[d] - expected) ** 2 / expected for d in "0123456789abcdef")
    # 15 degrees of freedom; the 99.99th percentile is about 42.6.
    assert chi_square < 50


def test_attempt_transitions_are_enforced() -> None:
    attempt = AuthorizationAttempt()
    assert attempt.state is AttemptState.IDLE
    assert AuthorizationAttempt().correlator != attempt.correlator

    attempt.advance(AttemptState.AWAITING_REDIRECT)
    with pytest.raises(RuntimeError):
        attempt.advance(AttemptState.SUCCEEDED)
    attempt.advance(AttemptState.EXCHANGING)
    attempt.advance(AttemptState.SUCCEEDED)
    assert attempt.terminal
    with pytest.raises(RuntimeError):
        attempt.advance(AttemptState.FAILED)
