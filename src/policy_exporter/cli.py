from __future__ import annotations

import logging
import sys
from pathlib import Path
from time import perf_counter
from typing import Any, Dict, Optional

from .config import RunConfig, load_run_config
from .logging import LogConfig, get_logger, setup_logging
from .pipeline import export_final, export_intermediate
from .sources.excel import read_policy_definition
from .util.console import render_category_summary_table, render_files_table
from .util.errors import ConfigError, as_exit_code

LOG = get_logger(__name__)


class _StepTimers:
    def __init__(self) -> None:
        self._starts: Dict[str, float] = {}

    def start(self, key: str) -> None:
        self._starts[key] = perf_counter()

    def finish(self, key: str) -> Optional[int]:
        started = self._starts.pop(key, None)
        if started is None:
            return None
        return int((perf_counter() - started) * 1000)


def _log_event(
    logger: Any,
    level: int,
    message: str,
    *,
    step: str,
    phase: str,
    timers: Optional[_StepTimers] = None,
    timer_key: Optional[str] = None,
    **extra: Any,
) -> None:
    key = timer_key or step
    duration_ms = None
    if timers is not None:
        if phase == "start":
            timers.start(key)
        elif phase in {"complete", "error", "warning", "validated", "skipped"}:
            duration_ms = timers.finish(key)
    payload: Dict[str, Any] = {"step": step, "phase": phase, "event": f"{step}.{phase}"}
    if duration_ms is not None:
        payload["duration_ms"] = duration_ms
    payload.update(extra)
    logger.log(level, message, extra=payload)


def _run_export(cfg: RunConfig, step: str, export: Any) -> int:
    timers = _StepTimers()
    _log_event(LOG, logging.INFO, "Export started", step=step, phase="start", timers=timers, outdir=str(cfg.outdir))
    try:
        result = export(cfg)
    except Exception as e:
        _log_event(LOG, logging.ERROR, "Export failed", step=step, phase="error", timers=timers, error=str(e))
        raise
    _log_event(
        LOG,
        logging.INFO,
        "Export complete",
        step=step,
        phase="complete",
        timers=timers,
        files=[str(p) for p in result["files"]],
    )
    interactive = sys.stdout.isatty() and not cfg.json_logs
    render_category_summary_table(enabled=interactive, definitions=result["definitions"])
    render_files_table(enabled=interactive, status="OK", files=result["files"], sources=result["sources"])
    return 0


def cmd_export_intermediate(cfg: RunConfig) -> int:
    if not cfg.management_groups:
        raise ConfigError("export-intermediate requires at least one management group")
    return _run_export(cfg, "export-intermediate", export_intermediate)


def cmd_export_final(cfg: RunConfig) -> int:
    if not cfg.management_groups:
        raise ConfigError("export-final requires at least one management group")
    return _run_export(cfg, "export-final", export_final)


def cmd_validate_workbook(cfg: RunConfig) -> int:
    if not cfg.excel_file:
        raise ConfigError("validate-workbook requires --excel-file")
    path = Path(cfg.excel_file)
    timers = _StepTimers()
    _log_event(LOG, logging.INFO, "Workbook validation started", step="validate", phase="start", timers=timers)
    definition = read_policy_definition(path, cfg.management_groups, cfg.subscriptions)
    _log_event(
        LOG,
        logging.INFO,
        "Workbook validated",
        step="validate",
        phase="validated",
        timers=timers,
        builtin_policies=len(definition.builtin_policies),
        custom_policies=len(definition.custom_policies),
        policy_set_parameters=len(definition.policy_set_parameters),
    )
    print(
        f"OK: {path.name} decoded; built-in policies={len(definition.builtin_policies)}, "
        f"custom policies={len(definition.custom_policies)}, "
        f"policy set parameters={len(definition.policy_set_parameters)}"
    )
    return 0


def main() -> None:
    try:
        command, cfg = load_run_config()
        setup_logging(LogConfig(level=cfg.log_level, json_logs=cfg.json_logs))

        if command == "export-intermediate":
            code = cmd_export_intermediate(cfg)
        elif command == "export-final":
            code = cmd_export_final(cfg)
        elif command == "validate-workbook":
            code = cmd_validate_workbook(cfg)
        else:
            raise ConfigError(f"Unknown command: {command}")

        sys.exit(code)
    except SystemExit:
        raise
    except BrokenPipeError:
        # Common when users pipe to `head` or similar tools.
        try:
            sys.exit(0)
        except SystemExit:
            raise
    except Exception as e:
        # Map to consistent exit code and log
        try:
            setup_logging(LogConfig())  # ensure something is configured
        except Exception:
            pass
        LOG.error("Execution failed", extra={"error": str(e)})
        sys.exit(as_exit_code(e))


if __name__ == "__main__":
    main()
