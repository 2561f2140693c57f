from app.repositories.base_repository import BaseRepository
from app.repositories.parse_repository import ParseRepository

__all__ = ["BaseRepository", "ParseRepository"]
