from datetime import datetime, timedelta
from services.retry_policy import RetryPolicy

NOW = datetime(2024, 3, 15, 12, 0, 0)

def test_delays_double_up_to_the_cap():
    policy = RetryPolicy()
    assert [policy.delay_for(n) for n in range(0, 8)] == [0.0, 5, 10, 20, 40, 80, 120, 120]

def test_record_failure_schedules_next_attempt():
    policy = RetryPolicy()
    assert policy.is_eligible(NOW)

    next_at = policy.record_failure(now=NOW)
    assert policy.attempt == 1
    assert next_at == NOW + timedelta(seconds=5)
    assert not policy.is_eligible(NOW + timedelta(seconds=4))
    assert policy.is_eligible(NOW + timedelta(seconds=5))

    policy.record_failure(now=NOW)
    assert policy.current_delay == 10
    assert policy.next_eligible_at == NOW + timedelta(seconds=10)

def test_reset():
    policy = RetryPolicy(attempt=3, next_eligible_at=NOW)
    policy.reset()
    assert policy.attempt == 0
    assert policy.next_eligible_at is None
    assert policy.is_eligible(NOW)

def test_to_dict():
    policy = RetryPolicy()
    policy.record_failure(now=NOW)
    assert policy.to_dict() == {
        'attempt': 1,
        'delaySeconds': 5,
        'nextEligibleAt': (NOW + timedelta(seconds=5)).isoformat(),
    }

def test_from_config_uses_settings_and_sanitizes_attempt():
    config = {'RETRY_BASE_DELAY': 2, 'RETRY_MAX_DELAY': 7}
    policy = RetryPolicy.from_config(config, attempt='3')
    assert policy.attempt == 3
    assert policy.delay_for(4) == 7

    assert RetryPolicy.from_config(config, attempt='garbage').attempt == 0
    assert RetryPolicy.from_config(config, attempt=-4).attempt == 0
    assert RetryPolicy.from_config(config, attempt=None).attempt == 0
