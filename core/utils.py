import math
import time


def parse_measurement(name: str, raw) -> float:
    '''Turn a submitted sensor value into a finite float. Missing, null or blank values count as 0.'''
    if raw is None or raw == "":
        return 0.0
    if isinstance(raw, bool):
        raise ValueError(f"Invalid value for {name}: {raw!r}")
    try:
        value = float(raw.strip() if isinstance(raw, str) else raw)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid value for {name}: {raw!r}")
    if not math.isfinite(value):
        raise ValueError(f"Invalid value for {name}: {raw!r}")
    return value


def audio_extension(filename: str, default: str = "mp3") -> str:
    '''Extension of the uploaded clip, without the dot.'''
    if filename and "." in filename:
        ext = filename.rsplit(".", 1)[1].strip()
        if ext:
            return ext
    return default


def build_audio_filename(filename: str, now_ms: int = None) -> str:
    '''Time based unique name for a stored clip, e.g. sensor_audio_1718000000000.wav'''
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"sensor_audio_{now_ms}.{audio_extension(filename)}"


def merge_latest(rows, fields):
    '''
        Merge readings (newest first) into one dict holding, for every field,
        the newest value that is not None.
    '''
    merged = {}
    for field in fields:
        merged[field] = None
        for row in rows:
            value = row.get(field)
            if value is not None:
                merged[field] = value
                break
    return merged
