from __future__ import annotations

import argparse
import json
import os
import warnings
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

# --------
# Defaults
# --------
DEFAULT_POLICY_QUERY_MANAGEMENT_GROUP = "Sandbox"
# Built-in "Azure Security Benchmark" initiative
DEFAULT_POLICY_SET_NAME = "1f3afdf9-d0c9-4c3d-847f-89da613e70a8"
DEFAULT_POLICY_SET_PARAMETER_GROUPS = ["Prod"]
ENV_PREFIX = "POLICY_EXPORTER_"
COMMANDS = ("export-intermediate", "export-final", "validate-workbook")
ALLOWED_CONFIG_KEYS = {
    "outdir",
    "subscription_id",
    "policy_query_management_group",
    "policy_set_name",
    "excel_file",
    "old_baseline_excel_file",
    "yaml_file",
    "local_repo_dir",
    "management_groups",
    "subscriptions",
    "policy_set_parameter_groups",
    "intermediate_sources",
    "final_sources",
    "json_logs",
    "log_level",
}
# Key names used by existing landing zone config files.
CONFIG_KEY_ALIASES = {
    "SubscriptionID": "subscription_id",
    "PolicyQueryASCPolicySetName": "policy_set_name",
    "PolicyQueryManagementGroupName": "policy_query_management_group",
    "ExcelFilePath": "excel_file",
    "OldBaselineExcelFilePath": "old_baseline_excel_file",
    "YAMLFilePath": "yaml_file",
    "ManagementGroups": "management_groups",
    "Subscriptions": "subscriptions",
    "TargetDir": "outdir",
    "LocalLandingZoneRepoDir": "local_repo_dir",
}
BOOL_CONFIG_KEYS = {"json_logs"}
LIST_CONFIG_KEYS = {
    "management_groups",
    "subscriptions",
    "policy_set_parameter_groups",
    "intermediate_sources",
    "final_sources",
}
PATH_CONFIG_KEYS = {"outdir", "excel_file", "old_baseline_excel_file", "yaml_file", "local_repo_dir"}
STR_CONFIG_KEYS = {"subscription_id", "policy_query_management_group", "policy_set_name", "log_level"}


@dataclass(frozen=True)
class RunConfig:
    # General
    outdir: Path
    json_logs: bool = False
    log_level: str = "INFO"

    # Azure
    subscription_id: Optional[str] = None
    policy_query_management_group: str = DEFAULT_POLICY_QUERY_MANAGEMENT_GROUP
    policy_set_name: str = DEFAULT_POLICY_SET_NAME

    # Inputs
    excel_file: Optional[Path] = None
    old_baseline_excel_file: Optional[Path] = None
    yaml_file: Optional[Path] = None
    local_repo_dir: Optional[Path] = None

    # Columns of the exported files
    management_groups: List[str] = field(default_factory=list)
    subscriptions: List[str] = field(default_factory=list)
    policy_set_parameter_groups: List[str] = field(default_factory=lambda: list(DEFAULT_POLICY_SET_PARAMETER_GROUPS))

    # Source order, "name[:mode]" entries; None means the command default
    intermediate_sources: Optional[List[str]] = None
    final_sources: Optional[List[str]] = None

    # Internal/derived
    started_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(timespec="seconds")
    )


def _parse_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() in {".yaml", ".yml"}:
            data = yaml.safe_load(text) or {}
        elif path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            # Try YAML first then JSON
            try:
                data = yaml.safe_load(text) or {}
            except yaml.YAMLError:
                data = json.loads(text)
    except Exception as e:
        raise ValueError(f"Failed to parse config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("Top-level config must be an object")
    return data


def _env_str(name: str) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None:
        return None
    raw = raw.strip()
    if not raw:
        return None
    return raw


def _env_bool(name: str) -> Optional[bool]:
    raw = os.getenv(name)
    if raw is None:
        return None
    raw = raw.strip().lower()
    if not raw:
        return None
    return raw in {"1", "true", "yes", "on"}


def _env_list(name: str) -> Optional[List[str]]:
    raw = _env_str(name)
    if raw is None:
        return None
    return _split_csv(raw)


def _split_csv(raw: str) -> List[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


def _coerce_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        raw = value.strip().lower()
        if raw in {"1", "true", "yes", "on"}:
            return True
        if raw in {"0", "false", "no", "off"}:
            return False
    raise ValueError(f"Config field '{key}' must be a boolean")


def _coerce_list(key: str, value: Any) -> List[str]:
    if isinstance(value, str):
        return _split_csv(value)
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return [v.strip() for v in value if v.strip()]
    raise ValueError(f"Config field '{key}' must be a list of strings or comma-separated string")


def _normalize_config_file(data: Dict[str, Any]) -> Dict[str, Any]:
    data = {CONFIG_KEY_ALIASES.get(k, k): v for k, v in data.items()}
    unknown = sorted(set(data.keys()) - ALLOWED_CONFIG_KEYS)
    if unknown:
        warnings.warn(f"Unknown config keys ignored: {', '.join(unknown)}")
    normalized: Dict[str, Any] = {}
    for key, value in data.items():
        if key not in ALLOWED_CONFIG_KEYS:
            continue
        if value is None:
            normalized[key] = None
            continue
        if key in LIST_CONFIG_KEYS:
            normalized[key] = _coerce_list(key, value)
        elif key in BOOL_CONFIG_KEYS:
            normalized[key] = _coerce_bool(key, value)
        elif key in PATH_CONFIG_KEYS:
            if isinstance(value, (str, Path)):
                normalized[key] = value
            else:
                raise ValueError(f"Config field '{key}' must be a string path")
        elif key in STR_CONFIG_KEYS:
            if isinstance(value, str):
                normalized[key] = value
            else:
                raise ValueError(f"Config field '{key}' must be a string")
        else:
            normalized[key] = value
    return _compact_dict(normalized)


def _compact_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Drop keys with None values so they don't override lower-precedence config.
    """
    return {k: v for k, v in data.items() if v is not None}


def _merge_dicts(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    """
    Shallow merge: values in b override a.
    """
    merged = dict(a)
    merged.update(b)
    return merged


def _optional_path(value: Any) -> Optional[Path]:
    return Path(value) if value else None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="policy-exporter",
        description="Export Azure policies to workbooks, landing zone parameter files and documentation",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # common flags builder
    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("--config", type=Path, help="Optional YAML/JSON config file")
        p.add_argument(
            "--json-logs",
            action=argparse.BooleanOptionalAction,
            default=None,
            help="Enable JSON logs",
        )
        p.add_argument("--log-level", default=None, help="Log level (INFO, DEBUG, ...)")
        p.add_argument(
            "--management-groups",
            default=None,
            help="Comma-separated management groups shown as columns (first is the root group)",
        )
        p.add_argument("--subscriptions", default=None, help="Comma-separated subscriptions for parameter columns")
        p.add_argument("--excel-file", type=Path, default=None, help="Intermediate workbook edited by reviewers")

    def add_export(p: argparse.ArgumentParser) -> None:
        add_common(p)
        p.add_argument("outdir", type=Path, nargs="?", default=None, help="Target directory (default: cwd)")
        p.add_argument(
            "--source",
            dest="sources",
            action="append",
            default=None,
            help="Source as name[:mode], repeatable; order is merge precedence",
        )
        p.add_argument("--subscription-id", default=None, help="Azure subscription (default: $AZURE_SUBSCRIPTION_ID)")
        p.add_argument("--management-group", dest="policy_query_management_group", default=None,
                       help=f"Management group to list built-in policies from (default {DEFAULT_POLICY_QUERY_MANAGEMENT_GROUP})")
        p.add_argument("--policy-set", dest="policy_set_name", default=None,
                       help="Built-in policy set whose parameters are exported")
        p.add_argument("--yaml-file", type=Path, default=None, help="Declarative YAML policy catalog")
        p.add_argument("--local-repo-dir", type=Path, default=None, help="Local landing zone repository")

    p_int = subparsers.add_parser("export-intermediate", help="Export the workbook used to collect reviewer input")
    add_export(p_int)
    p_int.add_argument("--old-baseline-excel-file", type=Path, default=None, help="Retired baseline workbook")

    p_final = subparsers.add_parser("export-final", help="Export landing zone JSON parameter files and MDX docs")
    add_export(p_final)
    p_final.add_argument(
        "--policy-set-parameter-groups",
        default=None,
        help="Comma-separated groups that get an ASC_policy_<group>.json file (default: Prod)",
    )

    p_val = subparsers.add_parser("validate-workbook", help="Decode an intermediate workbook and report problems")
    add_common(p_val)

    return parser


def load_run_config(
    args: Optional[argparse.Namespace] = None,
    argv: Optional[list[str]] = None,
    subcommand: Optional[str] = None,
) -> Tuple[str, RunConfig]:
    """
    Build RunConfig by merging defaults, optional config file, env vars, and CLI args.
    Precedence (low -> high): defaults < config file < env < CLI.

    Returns:
      (command, RunConfig) where command is export-intermediate|export-final|validate-workbook
    """
    ns = args if args is not None else build_parser().parse_args(argv)
    command = ns.command if subcommand is None else subcommand

    # defaults
    base: Dict[str, Any] = {
        "outdir": None,
        "subscription_id": None,
        "policy_query_management_group": DEFAULT_POLICY_QUERY_MANAGEMENT_GROUP,
        "policy_set_name": DEFAULT_POLICY_SET_NAME,
        "management_groups": [],
        "subscriptions": [],
        "policy_set_parameter_groups": list(DEFAULT_POLICY_SET_PARAMETER_GROUPS),
        "json_logs": False,
        "log_level": "INFO",
    }

    # config file
    file_cfg: Dict[str, Any] = {}
    if getattr(ns, "config", None):
        file_cfg = _normalize_config_file(_parse_config_file(Path(ns.config)))

    # env
    env_cfg: Dict[str, Any] = _compact_dict(
        {
            "outdir": _env_str(f"{ENV_PREFIX}OUTDIR"),
            "subscription_id": _env_str(f"{ENV_PREFIX}SUBSCRIPTION_ID") or _env_str("AZURE_SUBSCRIPTION_ID"),
            "policy_query_management_group": _env_str(f"{ENV_PREFIX}POLICY_QUERY_MANAGEMENT_GROUP"),
            "policy_set_name": _env_str(f"{ENV_PREFIX}POLICY_SET_NAME"),
            "excel_file": _env_str(f"{ENV_PREFIX}EXCEL_FILE"),
            "old_baseline_excel_file": _env_str(f"{ENV_PREFIX}OLD_BASELINE_EXCEL_FILE"),
            "yaml_file": _env_str(f"{ENV_PREFIX}YAML_FILE"),
            "local_repo_dir": _env_str(f"{ENV_PREFIX}LOCAL_REPO_DIR"),
            "management_groups": _env_list(f"{ENV_PREFIX}MANAGEMENT_GROUPS"),
            "subscriptions": _env_list(f"{ENV_PREFIX}SUBSCRIPTIONS"),
            "policy_set_parameter_groups": _env_list(f"{ENV_PREFIX}POLICY_SET_PARAMETER_GROUPS"),
            "intermediate_sources": _env_list(f"{ENV_PREFIX}INTERMEDIATE_SOURCES"),
            "final_sources": _env_list(f"{ENV_PREFIX}FINAL_SOURCES"),
            "json_logs": _env_bool(f"{ENV_PREFIX}JSON_LOGS"),
            "log_level": _env_str(f"{ENV_PREFIX}LOG_LEVEL"),
        }
    )

    # CLI
    def _cli_list(name: str) -> Optional[List[str]]:
        raw = getattr(ns, name, None)
        return _split_csv(raw) if raw else None

    sources = getattr(ns, "sources", None)
    cli_cfg: Dict[str, Any] = _compact_dict(
        {
            "outdir": getattr(ns, "outdir", None),
            "subscription_id": getattr(ns, "subscription_id", None),
            "policy_query_management_group": getattr(ns, "policy_query_management_group", None),
            "policy_set_name": getattr(ns, "policy_set_name", None),
            "excel_file": getattr(ns, "excel_file", None),
            "old_baseline_excel_file": getattr(ns, "old_baseline_excel_file", None),
            "yaml_file": getattr(ns, "yaml_file", None),
            "local_repo_dir": getattr(ns, "local_repo_dir", None),
            "management_groups": _cli_list("management_groups"),
            "subscriptions": _cli_list("subscriptions"),
            "policy_set_parameter_groups": _cli_list("policy_set_parameter_groups"),
            "intermediate_sources": sources if command == "export-intermediate" else None,
            "final_sources": sources if command == "export-final" else None,
            "json_logs": getattr(ns, "json_logs", None),
            "log_level": getattr(ns, "log_level", None),
        }
    )

    merged = _merge_dicts(base, _merge_dicts(file_cfg, _merge_dicts(env_cfg, cli_cfg)))

    # Normalize/construct types
    outdir_raw = merged.get("outdir")
    outdir = Path(outdir_raw) if outdir_raw else Path.cwd()
    subscription_id = merged.get("subscription_id")

    cfg = RunConfig(
        outdir=outdir,
        json_logs=bool(merged["json_logs"]),
        log_level=(merged.get("log_level") or "INFO").upper(),
        subscription_id=str(subscription_id) if subscription_id else None,
        policy_query_management_group=str(
            merged.get("policy_query_management_group") or DEFAULT_POLICY_QUERY_MANAGEMENT_GROUP
        ),
        policy_set_name=str(merged.get("policy_set_name") or DEFAULT_POLICY_SET_NAME),
        excel_file=_optional_path(merged.get("excel_file")),
        old_baseline_excel_file=_optional_path(merged.get("old_baseline_excel_file")),
        yaml_file=_optional_path(merged.get("yaml_file")),
        local_repo_dir=_optional_path(merged.get("local_repo_dir")),
        management_groups=list(merged.get("management_groups") or []),
        subscriptions=list(merged.get("subscriptions") or []),
        policy_set_parameter_groups=list(merged.get("policy_set_parameter_groups") or []),
        intermediate_sources=list(merged["intermediate_sources"]) if merged.get("intermediate_sources") else None,
        final_sources=list(merged["final_sources"]) if merged.get("final_sources") else None,
    )
    return command, cfg


def dump_config(cfg: RunConfig) -> Dict[str, Any]:
    def _path(value: Optional[Path]) -> Optional[str]:
        return str(value) if value else None

    return {
        "outdir": str(cfg.outdir),
        "json_logs": cfg.json_logs,
        "log_level": cfg.log_level,
        "subscription_id": cfg.subscription_id,
        "policy_query_management_group": cfg.policy_query_management_group,
        "policy_set_name": cfg.policy_set_name,
        "excel_file": _path(cfg.excel_file),
        "old_baseline_excel_file": _path(cfg.old_baseline_excel_file),
        "yaml_file": _path(cfg.yaml_file),
        "local_repo_dir": _path(cfg.local_repo_dir),
        "management_groups": cfg.management_groups,
        "subscriptions": cfg.subscriptions,
        "policy_set_parameter_groups": cfg.policy_set_parameter_groups,
        "intermediate_sources": cfg.intermediate_sources,
        "final_sources": cfg.final_sources,
        "started_at": cfg.started_at,
    }
