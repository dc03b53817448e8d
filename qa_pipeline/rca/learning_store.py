"""
QA Verification Pipeline
Fix learning store.

Remembers which strategy resolved which failure signature so the next
workflow hitting the same signature can skip model generation entirely.

Concurrency:
    Several workflows can succeed on the same signature at once. The upsert
    is a single ``INSERT … ON CONFLICT (pattern_signature) DO UPDATE SET
    reuse_count = reuse_count + 1`` statement on PostgreSQL and SQLite, so no
    increment is lost. Other backends fall back to SELECT … FOR UPDATE.
"""

import logging
import re

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from qa_pipeline.models import db, utcnow
from qa_pipeline.models.fixing import FixLearning, make_pattern_signature

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}
_STOP_WORDS = frozenset({"error", "failed", "the", "with", "from", "that", "this", "when", "into"})
_WORD_RE = re.compile(r"\W+")


def extract_keywords(text: str | None) -> set[str]:
    return {
        w for w in _WORD_RE.split((text or "").lower())
        if len(w) > 3 and w not in _STOP_WORDS
    }


def jaccard(a: set, b: set) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


class FixLearningStore:
    """Reads and writes ``fix_learnings`` on the caller's session."""

    def lookup(self, test_type: str, flag_types, classification: str) -> FixLearning | None:
        signature = make_pattern_signature(test_type, flag_types, classification)
        return db.session.execute(
            select(FixLearning).where(FixLearning.pattern_signature == signature)
        ).scalar_one_or_none()

    def record_success(
        self,
        test_type: str,
        flag_types,
        classification: str,
        strategy: str,
        error_pattern: str | None = None,
    ) -> FixLearning:
        """Insert the signature or bump its ``reuse_count``. Flushes, does not commit."""
        signature = make_pattern_signature(test_type, flag_types, classification)
        now = utcnow()
        values = {
            "pattern_signature": signature,
            "test_type": (test_type or "").lower(),
            "flag_types": ",".join(sorted({f for f in (flag_types or []) if f})),
            "classification": (classification or "").lower(),
            "successful_strategy": strategy,
            "error_pattern": error_pattern,
            "reuse_count": 1,
            "created_at": now,
            "last_used_at": now,
        }

        dialect = db.session.get_bind().dialect.name
        insert_fn = _UPSERT_DIALECTS.get(dialect)
        if insert_fn is not None:
            table = FixLearning.__table__
            stmt = insert_fn(table).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[table.c.pattern_signature],
                set_={
                    "reuse_count": table.c.reuse_count + 1,
                    "successful_strategy": stmt.excluded.successful_strategy,
                    "last_used_at": stmt.excluded.last_used_at,
                },
            )
            db.session.execute(stmt)
        else:
            existing = db.session.execute(
                select(FixLearning)
                .where(FixLearning.pattern_signature == signature)
                .with_for_update()
            ).scalar_one_or_none()
            if existing is None:
                db.session.add(FixLearning(**values))
            else:
                existing.reuse_count = existing.reuse_count + 1
                existing.successful_strategy = strategy
                existing.last_used_at = now
        db.session.flush()

        learning = db.session.execute(
            select(FixLearning)
            .where(FixLearning.pattern_signature == signature)
            .execution_options(populate_existing=True)
        ).scalar_one()
        logger.info("Fix learning recorded: %s -> %s (x%d)", signature, strategy, learning.reuse_count)
        return learning

    def find_similar(self, error_message: str, min_similarity: float = 0.5) -> list[dict]:
        """Learnings whose stored error text overlaps ``error_message`` (Jaccard)."""
        keywords = extract_keywords(error_message)
        if not keywords:
            return []
        matches = []
        for learning in db.session.execute(select(FixLearning)).scalars():
            score = jaccard(keywords, extract_keywords(learning.error_pattern))
            if score >= min_similarity:
                matches.append({**learning.to_dict(), "similarity": round(score, 3)})
        matches.sort(key=lambda m: m["similarity"], reverse=True)
        return matches

    def stats(self) -> dict:
        learnings = db.session.execute(select(FixLearning)).scalars().all()
        if not learnings:
            return {"total_patterns": 0, "total_reuses": 0, "top_strategies": []}

        by_strategy: dict[str, dict] = {}
        for learning in learnings:
            entry = by_strategy.setdefault(
                learning.successful_strategy,
                {"strategy": learning.successful_strategy, "patterns": 0, "uses": 0},
            )
            entry["patterns"] += 1
            entry["uses"] += learning.reuse_count

        top = sorted(by_strategy.values(), key=lambda s: s["uses"], reverse=True)[:5]
        return {
            "total_patterns": len(learnings),
            "total_reuses": sum(item.reuse_count for item in learnings),
            "top_strategies": top,
        }
