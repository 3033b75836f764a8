"""
Structured JSONL run logs.

One file per run under logs/, named <script>_<run_id>.jsonl. Each line holds
timestamp, script_name, run_id, level, message and an optional `extra` payload
(config, inputs, outputs, join stats, anomalies, metrics). Messages are also
echoed to stdout through the stdlib logging module.
"""

import importlib
import json
import logging
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from hamlets.paths import LOGS_DIR

# Libraries whose versions are stamped into logs and metadata sidecars
TRACKED_LIBRARIES = {
    "geopandas": "geopandas",
    "pandas": "pandas",
    "numpy": "numpy",
    "scikit-learn": "sklearn",
    "shapely": "shapely",
    "pyproj": "pyproj",
}


def generate_run_id() -> str:
    """UTC timestamp plus a short random suffix."""
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    return f"{stamp}_{uuid.uuid4().hex[:8]}"


def get_versions() -> dict[str, str]:
    """Python and tracked library versions; libraries that fail to import are skipped."""
    versions = {"python": sys.version.split()[0]}
    for name, module_name in TRACKED_LIBRARIES.items():
        try:
            versions[name] = importlib.import_module(module_name).__version__
        except ImportError:
            continue
    return versions


class JSONLLogger:
    """
    Run logger writing JSONL records.

    Usage:
        with get_logger("01_build_hamlets") as logger:
            logger.info("Clustering", extra={"n_points": 510})
            logger.log_metrics({"n_hamlets": 10})
    """

    def __init__(
        self,
        script_name: str,
        run_id: Optional[str] = None,
        log_dir: Optional[Path] = None,
    ):
        self.script_name = script_name
        self.run_id = run_id or generate_run_id()
        self.log_dir = Path(log_dir or LOGS_DIR)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.log_file = self.log_dir / f"{script_name}_{self.run_id}.jsonl"
        self._stream = open(self.log_file, "a", encoding="utf-8")

        self._console = logging.StreamHandler(sys.stdout)
        self._console.setLevel(logging.INFO)
        self._console.setFormatter(logging.Formatter("%(asctime)s - %(levelname)s - %(message)s"))
        self._logger = logging.getLogger(f"hamlets.{script_name}")
        self._logger.setLevel(logging.INFO)
        self._logger.addHandler(self._console)

        self._record("INFO", "Logger initialized", {
            "log_file": str(self.log_file),
            "versions": get_versions(),
        })

    def _record(self, level: str, message: str, extra: Optional[dict[str, Any]] = None) -> None:
        record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "script_name": self.script_name,
            "run_id": self.run_id,
            "level": level,
            "message": message,
        }
        if extra:
            record["extra"] = extra
        self._stream.write(json.dumps(record, default=str) + "\n")
        self._stream.flush()

    def _emit(self, level: int, message: str, extra: Optional[dict[str, Any]]) -> None:
        self._record(logging.getLevelName(level), message, extra)
        self._logger.log(level, message)

    def info(self, message: str, extra: Optional[dict[str, Any]] = None) -> None:
        self._emit(logging.INFO, message, extra)

    def warning(self, message: str, extra: Optional[dict[str, Any]] = None) -> None:
        self._emit(logging.WARNING, message, extra)

    def error(self, message: str, extra: Optional[dict[str, Any]] = None) -> None:
        self._emit(logging.ERROR, message, extra)

    # Structured events go to the JSONL file only

    def log_config(self, config: dict[str, Any], config_digest: Optional[str] = None) -> None:
        self._record("INFO", "Configuration loaded", {"config": config, "config_digest": config_digest})

    def log_inputs(self, inputs: dict[str, str]) -> None:
        self._record("INFO", "Inputs registered", {"inputs": inputs})

    def log_outputs(self, outputs: dict[str, str]) -> None:
        self._record("INFO", "Outputs registered", {"outputs": outputs})

    def log_metrics(self, metrics: dict[str, Any]) -> None:
        self._record("INFO", "Metrics recorded", {"metrics": metrics})

    def log_join_stats(self, join_stats: dict[str, Any]) -> None:
        self._record("INFO", "Join stats recorded", {"join_stats": join_stats})

    def log_anomalies(self, anomalies: list[dict[str, Any]]) -> None:
        """Recoverable data anomalies; WARNING level when there are any."""
        self._record("WARNING" if anomalies else "INFO", "Anomalies recorded", {"anomalies": anomalies})

    def close(self) -> None:
        self._record("INFO", "Logger closing")
        self._stream.close()
        self._logger.removeHandler(self._console)

    def __enter__(self) -> "JSONLLogger":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type is not None:
            self.error(f"Exception occurred: {exc_type.__name__}: {exc_val}")
        self.close()


def get_logger(
    script_name: str,
    run_id: Optional[str] = None,
    log_dir: Optional[Path] = None,
) -> JSONLLogger:
    """Logger for a script run, writing under LOGS_DIR unless `log_dir` is given."""
    return JSONLLogger(script_name=script_name, run_id=run_id, log_dir=log_dir)
