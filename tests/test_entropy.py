import math
import random

from attribute_tally import Window
from entropy_estimator import estimate, shannon_entropy


def _window(counts, other=0):
    return Window(start=0.0, end=10.0, counts=counts, other_count=other)


def test_single_value_has_zero_entropy():
    reading = estimate(_window({"10.0.0.1": 500}))
    assert reading.entropy == 0.0
    assert reading.total == 500
    assert reading.distinct == 1


def test_all_distinct_is_log2_n():
    for n in (2, 7, 64, 1000):
        reading = estimate(_window({f"v{i}": 1 for i in range(n)}))
        assert math.isclose(reading.entropy, math.log2(n), rel_tol=1e-12)
        assert math.isclose(reading.normalized, 1.0, rel_tol=1e-12)


def test_empty_window_is_zero_not_an_error():
    reading = estimate(_window({}))
    assert reading.entropy == 0.0
    assert reading.total == 0
    assert reading.distinct == 0


def test_zero_counts_are_excluded():
    assert shannon_entropy([4, 0, 4, 0]) == 1.0


def test_permutation_invariance():
    rng = random.Random(3)
    counts = {f"10.0.{i // 256}.{i % 256}": rng.randint(1, 50) for i in range(300)}
    relabeled = {f"host-{rng.random()}": c for c in counts.values()}
    assert math.isclose(estimate(_window(counts)).entropy, estimate(_window(relabeled)).entropy, rel_tol=1e-12)


def test_entropy_bounds():
    rng = random.Random(11)
    for _ in range(50):
        counts = {i: rng.randint(1, 1000) for i in range(rng.randint(1, 200))}
        reading = estimate(_window(counts))
        assert 0.0 <= reading.entropy <= math.log2(reading.distinct) + 1e-12


def test_other_bucket_counts_as_one_value():
    reading = estimate(_window({"a": 2}, other=2))
    assert reading.entropy == 1.0
    assert reading.total == 4
    assert reading.distinct == 2
