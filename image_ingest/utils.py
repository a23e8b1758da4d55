"""Small formatting helpers shared by the pipeline and the API."""
import math


def format_file_size(num_bytes: int) -> str:
    """Human readable size, e.g. 1536 -> '1.5 KB'. Negative input is treated as 0."""
    units = ["B", "KB", "MB", "GB"]
    num_bytes = max(num_bytes, 0)
    power = int(math.floor(math.log(num_bytes) / math.log(1024))) if num_bytes else 0
    power = min(power, len(units) - 1)
    value = round(num_bytes / (1024 ** power), 2)
    if value == int(value):
        value = int(value)
    return f"{value} {units[power]}"
