def clock_age(now: int, then: int, modulus: int) -> int:
    """Signed distance from ``then`` to ``now`` on a clock that wraps at ``modulus``.

    The raw difference is folded into ``[-modulus/2, modulus/2)`` so a reading
    taken just after rollover still compares correctly with one taken just
    before it. A negative result means ``then`` is ahead of ``now``.
    """
    diff = (now - then) % modulus
    if diff >= modulus // 2:
        diff -= modulus
    return diff


def us_to_ms(value: int) -> int:
    return value // 1000
