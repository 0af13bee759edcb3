"""
Modèle SQLAlchemy des enregistrements reçus depuis les appareils terrain.
Un document JSON par couple (type, identifiant client) : un renvoi écrase le précédent.
"""

from sqlalchemy import JSON, Column, DateTime, Integer, String, UniqueConstraint, func

from saksham.database import Base


class ReceivedRecord(Base):
    """Enregistrement métier tel que livré par la file de synchronisation."""
    __tablename__ = "received_records"
    __table_args__ = (UniqueConstraint("kind", "record_id", name="uq_received_kind_record"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    kind = Column(String(20), nullable=False, index=True)       # event, activity, attendance, photo, report
    record_id = Column(String(255), nullable=False)             # Identifiant généré sur l'appareil
    event_id = Column(String(255), nullable=True, index=True)   # NULL pour la fiche stagiaire
    payload = Column(JSON, nullable=False)

    received_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
