from datetime import timezone
from dateutil import parser


def iso_8601_to_timestamp(date_string: str) -> int:
    """Convert ISO 8601 datetime string to the timestamp (integer)

    Args:
        date_string (str): ISO 8601 format.
            e.g. "2021-06-22T07:16:03Z" or "2021-06-22T07:16:03.032" (naive means UTC)
    """

    date_obj = parser.parse(date_string)
    if date_obj.tzinfo is None:
        date_obj = date_obj.replace(tzinfo=timezone.utc)
    return int(date_obj.timestamp())
