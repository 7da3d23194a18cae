"""Arrival windows offered to sellers, as "HH:MM" strings on a single day"""

from typing import Optional


def _to_minutes(value: str) -> int:
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def _to_hhmm(total_minutes: int) -> str:
    return f"{total_minutes // 60:02d}:{total_minutes % 60:02d}"


def generate_arrival_windows(
    start_time: str,
    end_time: str,
    window_duration_minutes: int = 60,
    buffer_between_windows: int = 0,
    booked_slots: Optional[list[str]] = None,
) -> list[dict]:
    """
    Consecutive windows from start_time, each followed by the buffer; a window
    that would run past end_time is dropped.

    Returns:
        [{id: "10:00-11:00", start, end, available}]
    """
    start, end = _to_minutes(start_time), _to_minutes(end_time)
    if end <= start or window_duration_minutes <= 0:
        return []

    booked = set(booked_slots or [])
    windows = []
    current = start
    while current + window_duration_minutes <= end:
        window_start, window_end = _to_hhmm(current), _to_hhmm(current + window_duration_minutes)
        window_id = f"{window_start}-{window_end}"
        windows.append(
            {"id": window_id, "start": window_start, "end": window_end, "available": window_id not in booked}
        )
        current += window_duration_minutes + buffer_between_windows
    return windows


def _format_time(value: str, with_minutes: bool = True) -> tuple[str, str]:
    total = _to_minutes(value)
    hours, minutes = divmod(total, 60)
    period = "PM" if hours >= 12 else "AM"
    display_hour = hours % 12 or 12
    if not with_minutes and minutes == 0:
        return str(display_hour), period
    return f"{display_hour}:{minutes:02d}", period


def format_arrival_window(window: dict, short: bool = False) -> str:
    """'2:00 PM - 4:00 PM', or '9-10 AM' in short form"""
    if not short:
        start, start_period = _format_time(window["start"])
        end, end_period = _format_time(window["end"])
        return f"{start} {start_period} - {end} {end_period}"

    start, start_period = _format_time(window["start"], with_minutes=False)
    end, end_period = _format_time(window["end"], with_minutes=False)
    if start_period == end_period:
        return f"{start}-{end} {end_period}"
    return f"{start} {start_period}-{end} {end_period}"


def is_within_window(time_value: str, window: dict) -> bool:
    """Start inclusive, end exclusive"""
    minutes = _to_minutes(time_value)
    return _to_minutes(window["start"]) <= minutes < _to_minutes(window["end"])