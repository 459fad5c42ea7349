"""
Helper utilities
"""
import uuid
from datetime import datetime, timezone


def generate_uuid():
    """
    Generate a unique UUID

    Returns:
        str: UUID string
    """
    return str(uuid.uuid4())


def utcnow():
    """
    Current UTC time as a naive datetime

    All persisted timestamps are naive UTC so that values read back from the
    database compare cleanly with freshly generated ones.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat(dt):
    """Serialize a datetime (or None) for JSON payloads"""
    return dt.isoformat() if isinstance(dt, datetime) else dt


def format_location(location):
    """
    Build the display string for a structured location

    Args:
        location (dict): {street, city, state, zip, country}

    Returns:
        str: "street, city, state zip" or '' when no location is set
    """
    if not location:
        return ''
    return '{}, {}, {} {}'.format(
        location.get('street') or '',
        location.get('city') or '',
        location.get('state') or '',
        location.get('zip') or '',
    )


def parse_location(value):
    """
    Normalize a location given either as a dict or as a legacy string

    Legacy strings look like "123 Main St, Springfield, IL 62701".

    Returns:
        dict or None
    """
    if not value:
        return None
    if isinstance(value, dict):
        return {
            'street': value.get('street', ''),
            'city': value.get('city', ''),
            'state': value.get('state', ''),
            'zip': value.get('zip', ''),
            'country': value.get('country', 'USA'),
        }

    parts = str(value).split(',')
    state_zip = parts[2].strip() if len(parts) > 2 else ''
    return {
        'street': parts[0].strip(),
        'city': parts[1].strip() if len(parts) > 1 else '',
        'state': state_zip[:2],
        'zip': state_zip[3:].strip(),
        'country': 'USA',
    }


def normalize_state(state):
    """Case and whitespace insensitive form of a state name or code"""
    return (state or '').strip().lower()


def parse_datetime(value):
    """
    Parse an ISO-8601 timestamp (or pass a datetime through) as naive UTC

    Returns:
        datetime or None

    Raises:
        ValueError: if the string is not a valid timestamp
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt
