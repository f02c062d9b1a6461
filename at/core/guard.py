from datetime import timedelta

# Length of the window after check-in during which backend totals are ignored.
FRESH_WINDOW = timedelta(minutes=5)


# True while `now` is inside the fresh-session window that starts at check-in. There is no state to arm or clear,
# it's re-evaluated on every read and simply stops being true once the window has passed.
def is_active(check_in_time, now, window=FRESH_WINDOW):
    if check_in_time is None or now is None:
        return False
    return now - check_in_time < window
