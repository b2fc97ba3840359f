import logging

from sqlalchemy.orm import Session

from core.models import SensorReading, BrokerSettings
from core.utils import merge_latest

logger = logging.getLogger(__name__)

READING_FIELDS = (
    "temperature",
    "humidity",
    "soil_moisture",
    "nitrogen_value",
    "phosphorus_value",
    "potassium_value",
    "auto_message",
    "audio_url",
    "created_at",
)


class InvalidSettings(ValueError):
    pass


def reading_to_dict(row: SensorReading) -> dict:
    data = {"id": row.id}
    for field in READING_FIELDS:
        value = getattr(row, field)
        data[field] = value.isoformat() if field == "created_at" and value else value
    return data


# ===============================
# SENSOR READINGS
# ===============================

def create_reading(db: Session, **values) -> SensorReading:
    row = SensorReading(**values)
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def latest_reading(db: Session):

    '''
        The newest reading as the dashboard shows it. The two producers fill different columns,
        so every field takes the newest non-null value found in the two most recent rows.
    '''

    rows = (
        db.query(SensorReading)
        .order_by(SensorReading.created_at.desc(), SensorReading.id.desc())
        .limit(2)
        .all()
    )
    if not rows:
        return None

    merged = merge_latest([reading_to_dict(r) for r in rows], READING_FIELDS)
    merged["id"] = rows[0].id
    return merged


def reading_history(db: Session, limit: int = 50):
    '''Readings that carry NPK values, newest first.'''
    rows = (
        db.query(SensorReading)
        .filter(SensorReading.nitrogen_value.isnot(None))
        .order_by(SensorReading.created_at.desc(), SensorReading.id.desc())
        .limit(limit)
        .all()
    )
    return [reading_to_dict(r) for r in rows]


# ===============================
# BROKER SETTINGS
# ===============================

def load_settings(db: Session, user_id: str):
    return (
        db.query(BrokerSettings)
        .filter(BrokerSettings.user_id == user_id)
        .order_by(BrokerSettings.created_at.desc(), BrokerSettings.id.desc())
        .first()
    )


def save_settings(db: Session, user_id: str, url: str, port: int, message: str, topic: str = None) -> BrokerSettings:

    '''Upsert the user's broker settings: the current row is updated in place, or one is created.'''

    url = (url or "").strip()
    message = (message or "").strip()
    topic = (topic or "").strip() or None

    if not url:
        raise InvalidSettings("Please enter the broker URL")
    if not message:
        raise InvalidSettings("Please enter the message")
    if not isinstance(port, int) or isinstance(port, bool) or not 1 <= port <= 65535:
        raise InvalidSettings(f"Port must be between 1 and 65535, got {port!r}")

    row = load_settings(db, user_id)
    if row is None:
        row = BrokerSettings(user_id=user_id)
        db.add(row)
        logger.info("Creating broker settings for %s", user_id)
    else:
        logger.info("Updating broker settings %s for %s", row.id, user_id)

    row.url = url
    row.port = port
    row.topic = topic
    row.message = message

    db.commit()
    db.refresh(row)
    return row
