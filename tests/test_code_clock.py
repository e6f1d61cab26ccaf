from datetime import datetime, timedelta, timezone

from medaccess.access.code_clock import CodeClock

# RFC 6238 appendix B seed ("12345678901234567890"), SHA1
RFC_SEED = "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ"


def _at(ts: int) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def test_current_code_matches_rfc_vectors():
    cc = CodeClock(step_seconds=30, digits=6)
    assert cc.current_code(RFC_SEED, _at(59))[0] == "287082"
    assert cc.current_code(RFC_SEED, _at(1111111109))[0] == "081804"
    assert cc.current_code(RFC_SEED, _at(1234567890))[0] == "005924"


def test_remaining_seconds_counts_down_within_step():
    cc = CodeClock()
    assert cc.current_code(RFC_SEED, _at(1000))[1] == 20
    assert cc.current_code(RFC_SEED, _at(1019))[1] == 11
    assert cc.current_code(RFC_SEED, _at(1020))[1] == 30


def test_current_code_is_pure_and_stable_within_a_step():
    cc = CodeClock()
    assert cc.current_code(RFC_SEED, _at(1000)) == cc.current_code(RFC_SEED, _at(1000))
    assert cc.current_code(RFC_SEED, _at(1000))[0] == cc.current_code(RFC_SEED, _at(1015))[0]


def test_naive_datetimes_are_treated_as_utc():
    cc = CodeClock()
    aware = _at(1111111109)
    naive = aware.replace(tzinfo=None)
    assert cc.current_code(RFC_SEED, naive) == cc.current_code(RFC_SEED, aware)


def test_matches_accepts_one_step_of_drift_either_side():
    cc = CodeClock()
    t = _at(1111111109)
    code, _ = cc.current_code(RFC_SEED, t)
    assert cc.matches(RFC_SEED, code, t)
    assert cc.matches(RFC_SEED, code, t - timedelta(seconds=30))
    assert cc.matches(RFC_SEED, code, t + timedelta(seconds=30))
    assert not cc.matches(RFC_SEED, code, t + timedelta(seconds=60))
    assert not cc.matches(RFC_SEED, code, t - timedelta(seconds=60))


def test_zero_drift_only_accepts_the_current_step():
    cc = CodeClock()
    t = _at(1111111109)
    code, _ = cc.current_code(RFC_SEED, t)
    assert cc.matches(RFC_SEED, code, t, drift_steps=0)
    assert not cc.matches(RFC_SEED, code, t + timedelta(seconds=30), drift_steps=0)


def test_longer_codes_are_supported():
    cc = CodeClock(digits=8)
    assert cc.current_code(RFC_SEED, _at(59))[0] == "94287082"


def test_new_seed_is_base32():
    seed = CodeClock.new_seed()
    assert len(seed) == 32
    assert set(seed) <= set("ABCDEFGHIJKLMNOPQRSTUVWXYZ234567")
    assert CodeClock.new_seed() != seed
