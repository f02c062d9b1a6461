# Formatting for the two figures shown to the user. Both are total: bad input just reads as zero.


# "X hrs - Y mins", rounded down to whole minutes, no pluralization.
def format_hours(total_seconds):
    seconds = max(0, int(total_seconds or 0))
    hours, rem = divmod(seconds, 3600)
    return f"{hours} hrs - {rem // 60} mins"

# H:MM:SS clock for the break currently in progress.
def format_clock(total_seconds):
    seconds = max(0, int(total_seconds or 0))
    hours, rem = divmod(seconds, 3600)
    minutes, seconds = divmod(rem, 60)
    return f"{hours}:{minutes:02d}:{seconds:02d}"
