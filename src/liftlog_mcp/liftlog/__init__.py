from liftlog_mcp.liftlog.client import SupabaseWorkoutStore
from liftlog_mcp.liftlog.store import InMemoryWorkoutStore, WorkoutStore
from liftlog_mcp.liftlog.session import SessionRuntime, OperationResult, FinishResult, StaleCheck, ErrorCode
from liftlog_mcp.liftlog.models import (
    WorkoutSession, ExerciseEntry, WorkoutSet, Dropset, RestTimer,
    HistoryRecord, PersistedRecord, PersonalRecordRow, CatalogExercise,
    Routine, RoutineExercise, RoutineSet, UserPreferences, SessionStatus,
)
from liftlog_mcp.liftlog.exceptions import (
    LiftLogError, AuthenticationError, PersistenceError, MissingContextError,
    AuthorizationError, ValidationError, InvalidStateError,
)

__all__ = [
    "SupabaseWorkoutStore", "InMemoryWorkoutStore", "WorkoutStore",
    "SessionRuntime", "OperationResult", "FinishResult", "StaleCheck", "ErrorCode",
    "WorkoutSession", "ExerciseEntry", "WorkoutSet", "Dropset", "RestTimer",
    "HistoryRecord", "PersistedRecord", "PersonalRecordRow", "CatalogExercise",
    "Routine", "RoutineExercise", "RoutineSet", "UserPreferences", "SessionStatus",
    "LiftLogError", "AuthenticationError", "PersistenceError", "MissingContextError",
    "AuthorizationError", "ValidationError", "InvalidStateError",
]
