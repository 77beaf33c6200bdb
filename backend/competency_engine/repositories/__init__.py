from .competency_records import CompetencyRecordRepository, SqlPersistenceAdapter

__all__ = ["CompetencyRecordRepository", "SqlPersistenceAdapter"]
