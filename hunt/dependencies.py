from concurrent.futures import ThreadPoolExecutor
from functools import lru_cache

import requests
from fastapi import Depends
from sqlmodel import Session

from .config import AUDIT_WORKERS
from .database import engine, get_session
from .services.audit import AuditLogger
from .services.challenge_store import ChallengeStore
from .services.progression import ParticipantProgression
from .services.verification import VerificationService


@lru_cache(maxsize=1)
def get_audit_logger() -> AuditLogger:
    executor = ThreadPoolExecutor(max_workers=AUDIT_WORKERS, thread_name_prefix="audit") if AUDIT_WORKERS > 0 else None
    return AuditLogger(engine, executor)


def shutdown_audit_logger() -> None:
    """Drain queued audit writes. Does nothing if no logger was ever created."""
    if get_audit_logger.cache_info().currsize:
        get_audit_logger().close()
        get_audit_logger.cache_clear()


# One HTTP session per request, requests.Session is not safe to share between threads
def get_verifier():
    with requests.Session() as http:
        yield VerificationService(http=http)


def get_store(session: Session = Depends(get_session)) -> ChallengeStore:
    return ChallengeStore(session)


def get_progression(
    store: ChallengeStore = Depends(get_store),
    verifier: VerificationService = Depends(get_verifier),
    audit: AuditLogger = Depends(get_audit_logger),
) -> ParticipantProgression:
    return ParticipantProgression(store.session, store, verifier, audit)
