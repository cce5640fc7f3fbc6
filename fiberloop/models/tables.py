"""Relational layout of persisted networks"""
from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    func,
)

metadata = MetaData()

networks = Table(
    "networks",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("main_point_name", String(255)),
    Column("total_length", Float, nullable=False, default=0.0),
    Column("existing_length", Float, nullable=False, default=0.0),
    Column("proposed_length", Float, nullable=False, default=0.0),
    Column("st_code", String(32)),
    Column("st_name", String(255)),
    Column("dt_code", String(32)),
    Column("dt_name", String(255)),
    Column("blk_code", String(32)),
    Column("blk_name", String(255)),
    Column("user_id", Integer),
    Column("user_name", String(255)),
    Column("status", String(32), nullable=False, default="unverified"),
    Column("created_at", DateTime, server_default=func.now()),
)

# Connections reference points by name and location code rather than row id,
# so a point that failed to insert does not orphan its segments.
points = Table(
    "points",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("network_id", Integer, ForeignKey("networks.id"), nullable=False, index=True),
    Column("name", String(255), nullable=False),
    Column("coordinates", JSON, nullable=False),
    Column("lgd_code", String(64)),
    Column("properties", JSON),
)

connections = Table(
    "connections",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("network_id", Integer, ForeignKey("networks.id"), nullable=False, index=True),
    Column("start", String(255), nullable=False),
    Column("end", String(255), nullable=False),
    Column("length", Float, nullable=False, default=0.0),
    Column("original_name", String(512)),
    Column("coordinates", JSON, nullable=False),
    Column("color", String(16)),
    Column("start_latlong", String(64)),
    Column("end_latlong", String(64)),
    Column("type", String(16), nullable=False),
    Column("status", String(32)),
    Column("properties", JSON),
)
