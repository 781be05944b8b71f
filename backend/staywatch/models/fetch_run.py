from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, JSON, Enum as SQLEnum
from staywatch.database import Base
from staywatch.errors import ErrorKind
import enum


class RunStatus(str, enum.Enum):
    OK = "OK"
    ERROR = "ERROR"
    BLOCKED = "BLOCKED"
    PARSE_FAILED = "PARSE_FAILED"


class FetchRun(Base):
    """
    History of extraction jobs, one row per job.

    Key features:
    - Failure kind and message for each failed job
    - Strategy attempts in order, so structure drift shows up separately from blocking
    - HTML snapshot path on structural mismatch for debugging
    """
    __tablename__ = "fetch_runs"

    id = Column(Integer, primary_key=True, index=True)
    profile_id = Column(
        String(64), ForeignKey("search_profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    fingerprint_id = Column(
        String(64), ForeignKey("search_fingerprints.id", ondelete="SET NULL"), nullable=True
    )
    provider_code = Column(String(50), nullable=False, index=True)

    status = Column(SQLEnum(RunStatus), nullable=False)
    error_kind = Column(String(50), nullable=True)
    error_message = Column(Text, nullable=True)
    strategy = Column(String(30), nullable=True)
    attempts = Column(JSON, default=list, nullable=False)
    record_count = Column(Integer, default=0, nullable=False)
    duration_ms = Column(Integer, default=0, nullable=False)
    html_snapshot_path = Column(String(500), nullable=True)

    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True, index=True)

    @staticmethod
    def status_for(error_kind: ErrorKind | None) -> RunStatus:
        if error_kind is None:
            return RunStatus.OK
        if error_kind in (
            ErrorKind.PROVIDER_UNAVAILABLE,
            ErrorKind.CHALLENGE_UNRESOLVED,
            ErrorKind.RATE_LIMITED,
        ):
            return RunStatus.BLOCKED
        if error_kind == ErrorKind.STRUCTURAL_MISMATCH:
            return RunStatus.PARSE_FAILED
        return RunStatus.ERROR

    def __repr__(self) -> str:
        return f"<FetchRun {self.provider_code} {self.status.value} {self.error_kind or ''}>"
