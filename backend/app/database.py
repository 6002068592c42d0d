"""
Configuration de la connexion à la base de données PostgreSQL.
Utilise SQLAlchemy en mode synchrone : chaque requête HTTP (ou tâche du
marquage groupé) ouvre sa propre session.
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker

from app.config import settings

# pool_pre_ping : évite les erreurs sur connexion coupée après une longue inactivité (nuit)
engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Dépendance FastAPI : fournit une session BDD et la ferme après usage."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
