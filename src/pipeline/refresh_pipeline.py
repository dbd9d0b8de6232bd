"""Background insight refresh jobs with explicit health signaling."""

from __future__ import annotations

import json
import logging
import os
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from data_store import InsightStore, resolve_conn_str
from insight_engine import InsightEngine
from pipeline.migrations import ensure_startup_schema

log = logging.getLogger("refresh_pipeline")

JOB_REFRESH = "refresh_insights"
JOB_DAILY = "daily_insights"
JOB_TYPES = (JOB_REFRESH, JOB_DAILY)


class InsightRefreshPipeline:
    """Runs insight refresh jobs and persists a machine-readable status file.

    ``refresh_insights`` handles one user (after their data changed);
    ``daily_insights`` walks every user that owns at least one metric.
    """

    def __init__(self, engine: Optional[InsightEngine] = None, run_migrations: bool = True):
        self.conn_str = resolve_conn_str()
        self.engine = engine
        self.run_migrations = run_migrations

    def _get_engine(self) -> InsightEngine:
        if self.engine is None:
            self.engine = InsightEngine(store=InsightStore(self.conn_str))
        return self.engine

    def run(self, job_type: str, user_id: Any = None) -> bool:
        """Execute one job and return whether it is considered healthy."""
        if job_type not in JOB_TYPES:
            raise ValueError(f"unknown job type {job_type!r}; expected one of {JOB_TYPES}")
        if job_type == JOB_REFRESH and user_id is None:
            raise ValueError("refresh_insights needs a user_id")

        status: Dict[str, Any] = {
            "job_type": job_type,
            "run_date": date.today().isoformat(),
            "run_started_at": datetime.now(timezone.utc).isoformat(),
            "users": {},
            "analysis_status": "unknown",
            "degraded_reasons": [],
        }

        log.info("=" * 60)
        log.info("  INSIGHT REFRESH STARTED (%s)", job_type)
        log.info("=" * 60)

        try:
            if self.run_migrations:
                log.info("Step 0/2: Running startup migrations...")
                ensure_startup_schema(self.conn_str)

            engine = self._get_engine()
            if job_type == JOB_REFRESH:
                user_ids: List[Any] = [user_id]
            else:
                user_ids = list(engine.store.list_user_ids())
            log.info("Step 1/2: Refreshing insights for %d user(s)...", len(user_ids))

            for uid in user_ids:
                status["users"][str(uid)] = self._refresh_user(engine, uid)

            log.info("Step 2/2: Summarising run...")
            status["analysis_status"], status["degraded_reasons"] = self._summarise(status["users"])
        except Exception as e:
            status["analysis_status"] = "failed"
            status["degraded_reasons"] = ["pipeline_exception"]
            log.exception("Pipeline failed: %s", e)
        finally:
            status["run_finished_at"] = datetime.now(timezone.utc).isoformat()
            status["overall_status"] = self._overall_status(status)
            self._write_pipeline_status_file(status)
            self._print_summary(status)
            log.info("=" * 60)
            log.info("  INSIGHT REFRESH COMPLETE (status=%s)", status["overall_status"])
            log.info("=" * 60)

        strict_health = os.getenv("STRICT_PIPELINE_HEALTH", "0").strip() == "1"
        if strict_health:
            return status["overall_status"] == "success"
        return status["overall_status"] != "failed"

    @staticmethod
    def _refresh_user(engine: InsightEngine, user_id: Any) -> Dict[str, Any]:
        try:
            result = engine.refresh_insights(user_id)
        except Exception as e:
            log.error("Insight refresh failed for user %s: %s", user_id, e)
            return {"generated": False, "stored": False, "broadcast": False, "error": str(e)}

        bundle = result.get("bundle")
        return {
            "generated": True,
            "stored": bool(result.get("stored")),
            "broadcast": bool(result.get("broadcast")),
            "n_correlations": len(bundle.correlations) if bundle else 0,
            "n_recommendations": len(bundle.recommendations) if bundle else 0,
        }

    @staticmethod
    def _summarise(users: Dict[str, Dict[str, Any]]):
        reasons: List[str] = []
        if not users:
            return "success", reasons
        generated = [u for u in users.values() if u.get("generated")]
        if not generated:
            return "failed", ["all_generations_failed"]
        if len(generated) < len(users):
            reasons.append("some_generations_failed")
        if any(not u.get("stored") for u in generated):
            reasons.append("persistence_failed")
        return ("degraded" if reasons else "success"), reasons

    @staticmethod
    def _overall_status(status: Dict[str, Any]) -> str:
        if status.get("analysis_status") in ("failed", "unknown"):
            return "failed"
        if status.get("analysis_status") == "degraded":
            return "degraded"
        return "success"

    @staticmethod
    def _write_pipeline_status_file(status: Dict[str, Any]) -> None:
        today = date.today().isoformat()
        default_path = f"insight_refresh_status_{today}.json"
        path = os.getenv("PIPELINE_STATUS_PATH", default_path)
        try:
            with open(path, "w", encoding="utf-8") as fh:
                json.dump(status, fh, indent=2, ensure_ascii=False, default=str)
            log.info("Pipeline status written to %s", path)
        except Exception as e:
            log.warning("Failed to write pipeline status file: %s", e)

    @staticmethod
    def _print_summary(status: Dict[str, Any]) -> None:
        log.info("REFRESH SUMMARY:")
        log.info("  Users processed: %d", len(status.get("users", {})))
        for uid, info in status.get("users", {}).items():
            log.info("  user %s: generated=%s stored=%s broadcast=%s",
                     uid, info.get("generated"), info.get("stored"), info.get("broadcast"))
        reasons = status.get("degraded_reasons") or []
        if reasons:
            log.info("  Degraded reasons: %s", ", ".join(reasons))
        log.info("  Overall status: %s", status.get("overall_status"))
