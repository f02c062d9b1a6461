"""Session clock: pure time arithmetic for the online/offline timers."""


def elapsed_seconds(start_time, now):
    """Whole seconds between ``start_time`` and ``now``.

    ``now`` is always supplied by the caller so nothing here reads the wall
    clock.  Results round down, and a start in the future (client clock behind
    a backend timestamp) clamps to zero instead of going negative.
    """
    if start_time is None or now is None:
        return 0
    return max(0, int((now - start_time).total_seconds()))
