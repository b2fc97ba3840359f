from datetime import datetime, timezone

from sqlalchemy import Column, Integer, Float, String, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from core.database import Base


def utcnow():
    return datetime.now(timezone.utc)


class SensorReading(Base):

    '''
        One row of field measurements. Two producers write into this table: the gateway posting
        JSON (temperature, humidity and soil moisture only) and the webhook posting multipart forms
        (all fields plus an optional audio clip). Columns a producer does not send stay NULL.
    '''

    __tablename__ = "sensor_data"

    id = Column(Integer, primary_key=True, index=True)
    temperature = Column(Float)
    humidity = Column(Float)
    soil_moisture = Column(Float)
    nitrogen_value = Column(Float)
    phosphorus_value = Column(Float)
    potassium_value = Column(Float)
    auto_message = Column(Text)
    audio_url = Column(String)
    created_at = Column(DateTime, default=utcnow, index=True)


class Profile(Base):
    __tablename__ = "profiles"

    # Same id as the account in the identity service
    id = Column(String(64), primary_key=True)
    username = Column(String(64))
    email = Column(String(255))
    created_at = Column(DateTime, default=utcnow)

    roles = relationship("UserRole", cascade="all, delete-orphan", passive_deletes=True)
    broker_settings = relationship("BrokerSettings", cascade="all, delete-orphan", passive_deletes=True)


class UserRole(Base):
    __tablename__ = "user_roles"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), ForeignKey("profiles.id", ondelete="CASCADE"), index=True, nullable=False)
    role = Column(String(32), nullable=False)
    created_at = Column(DateTime, default=utcnow)


class BrokerSettings(Base):
    __tablename__ = "mqtt_settings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), ForeignKey("profiles.id", ondelete="CASCADE"), index=True, nullable=False)
    url = Column(String(255), nullable=False)
    port = Column(Integer, nullable=False)
    topic = Column(String(255))
    message = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
