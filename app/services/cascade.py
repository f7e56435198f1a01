import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.errors import MBEEError, StoreError

logger = logging.getLogger(__name__)


def collect_subtree(
    fetch_children: Callable[[list[str]], Iterable[str]], root_ids: Iterable[str]
) -> list[str]:
    """Returns ``root_ids`` plus every descendant, breadth first.

    ``fetch_children`` maps a frontier of ids to the ids of their direct
    children. The walk stops once a frontier yields nothing new, so cycles in
    stored data cannot loop forever.
    """
    collected = list(dict.fromkeys(root_ids))
    seen = set(collected)
    frontier = collected
    while frontier:
        discovered = []
        for child_id in fetch_children(frontier):
            if child_id not in seen:
                seen.add(child_id)
                discovered.append(child_id)
        collected = collected + discovered
        frontier = discovered
    return collected


@dataclass(frozen=True)
class CascadeStep:
    name: str
    run: Callable[[Session], int]
    expected: int | None = None


def verify_count(step: str, expected: int, actual: int) -> None:
    """Raises ``StoreError`` when a write touched a different number of documents."""
    if actual != expected:
        logger.error(
            "Step %s affected %d documents, expected %d", step, actual, expected
        )
        raise StoreError(
            f"Step [{step}] expected to affect {expected} documents "
            f"but affected {actual}."
        )


def run_cascade(db: Session, steps: list[CascadeStep]) -> dict[str, int]:
    """Runs delete steps in order, committing each before starting the next.

    A failing step stops the cascade. Earlier steps stay committed and the
    error names the step that failed. Steps with an ``expected`` count fail
    when the store reports a different number of deleted documents.
    """
    counts: dict[str, int] = {}
    for step in steps:
        try:
            counts[step.name] = step.run(db)
            if step.expected is not None:
                verify_count(step.name, step.expected, counts[step.name])
            db.commit()
        except MBEEError as exc:
            db.rollback()
            logger.error("Cascade step %s failed: %s", step.name, exc.detail)
            raise StoreError(
                f"Cascade step [{step.name}] failed: {exc.detail}", ids=exc.ids
            ) from exc
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Cascade step %s failed: %s", step.name, exc)
            raise StoreError(f"Cascade step [{step.name}] failed.") from exc
        logger.info(
            "Cascade step %s removed %d documents", step.name, counts[step.name]
        )
    return counts
