"""
IPAudit Database Models
SQLAlchemy ORM models for audit runs and their per-case results
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import create_engine, Column, Integer, String, Boolean, Text, DateTime, ForeignKey, JSON, Float
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
import uuid

from .auditor import AuditResult

Base = declarative_base()


def generate_uuid():
    return str(uuid.uuid4())


class AuditRun(Base):
    """One correlation + batch audit over a strategy file and a ground truth file"""
    __tablename__ = 'audit_runs'

    id = Column(String(36), primary_key=True, default=generate_uuid)
    ai_provider = Column(String(50), nullable=False)
    ai_model = Column(String(100), nullable=False)
    strategies_file = Column(String(500), nullable=True)
    ground_truth_file = Column(String(500), nullable=True)

    cases_total = Column(Integer, default=0)
    cases_matched = Column(Integer, default=0)

    # running / completed / halted / failed
    status = Column(String(20), default="running")
    halt_reason = Column(Text, nullable=True)
    errors = Column(JSON, nullable=True)  # [[app_number, message], ...]

    start_time = Column(DateTime, default=datetime.utcnow)
    end_time = Column(DateTime, nullable=True)

    records = relationship("AuditRecord", back_populates="run", cascade="all, delete-orphan",
                           order_by="AuditRecord.position")


class AuditRecord(Base):
    """Evaluation returned for one merged case"""
    __tablename__ = 'audit_records'

    id = Column(String(36), primary_key=True, default=generate_uuid)
    run_id = Column(String(36), ForeignKey('audit_runs.id'), nullable=False)
    position = Column(Integer, nullable=False)
    app_number = Column(String(100), nullable=False)
    matched = Column(Boolean, default=False)

    # Denormalized for listing/filtering; full payload kept in result_json
    final_score = Column(Float, nullable=True)
    prediction_accuracy = Column(String(100), nullable=True)
    source_type = Column(String(100), nullable=True)
    result_json = Column(JSON, nullable=False)

    run = relationship("AuditRun", back_populates="records")

    created_at = Column(DateTime, default=datetime.utcnow)


class DatabaseManager:
    """Manages database connections and sessions"""

    def __init__(self, db_path: str):
        self.engine = create_engine(f'sqlite:///{db_path}', echo=False)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine)

    def get_session(self):
        return self.Session()

    def start_run(self, ai_provider: str, ai_model: str, strategies_file: str = None,
                  ground_truth_file: str = None, cases_total: int = 0, cases_matched: int = 0) -> str:
        """Create a running AuditRun and return its id"""
        session = self.Session()
        try:
            run = AuditRun(
                ai_provider=ai_provider,
                ai_model=ai_model,
                strategies_file=strategies_file,
                ground_truth_file=ground_truth_file,
                cases_total=cases_total,
                cases_matched=cases_matched,
                start_time=datetime.utcnow(),
            )
            session.add(run)
            session.commit()
            return run.id
        finally:
            session.close()

    def store_result(self, run_id: str, result: AuditResult, matched: bool = True) -> None:
        """Append one audit result to a run"""
        session = self.Session()
        try:
            position = session.query(AuditRecord).filter(AuditRecord.run_id == run_id).count()
            session.add(AuditRecord(
                run_id=run_id,
                position=position,
                app_number=result.app_number,
                matched=matched,
                final_score=result.final_score,
                prediction_accuracy=result.prediction_accuracy,
                source_type=result.source_type,
                result_json=result.to_dict(),
            ))
            session.commit()
        finally:
            session.close()

    def finish_run(self, run_id: str, status: str, errors: Optional[List[Tuple[str, str]]] = None,
                   halt_reason: str = None) -> None:
        session = self.Session()
        try:
            run = session.get(AuditRun, run_id)
            if not run:
                raise ValueError(f"Audit run not found: {run_id}")
            run.status = status
            run.errors = [list(e) for e in errors] if errors else None
            run.halt_reason = halt_reason
            run.end_time = datetime.utcnow()
            session.commit()
        finally:
            session.close()

    def get_run(self, run_id: str) -> Optional[Dict[str, Any]]:
        session = self.Session()
        try:
            run = session.get(AuditRun, run_id)
            return self._serialize_run(run) if run else None
        finally:
            session.close()

    def list_runs(self) -> List[Dict[str, Any]]:
        """All runs, newest first"""
        session = self.Session()
        try:
            runs = session.query(AuditRun).order_by(AuditRun.start_time.desc()).all()
            return [self._serialize_run(r) for r in runs]
        finally:
            session.close()

    def get_results(self, run_id: str) -> List[AuditResult]:
        """Stored results of a run, in audit order"""
        session = self.Session()
        try:
            records = session.query(AuditRecord).filter(
                AuditRecord.run_id == run_id
            ).order_by(AuditRecord.position).all()
            return [AuditResult.from_dict(r.result_json) for r in records]
        finally:
            session.close()

    @staticmethod
    def _serialize_run(run: AuditRun) -> Dict[str, Any]:
        return {
            'id': run.id,
            'ai_provider': run.ai_provider,
            'ai_model': run.ai_model,
            'strategies_file': run.strategies_file,
            'ground_truth_file': run.ground_truth_file,
            'cases_total': run.cases_total,
            'cases_matched': run.cases_matched,
            'results': len(run.records),
            'status': run.status,
            'halt_reason': run.halt_reason,
            'errors': [tuple(e) for e in run.errors or []],
            'start_time': run.start_time,
            'end_time': run.end_time,
        }
