from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from types import SimpleNamespace
from typing import Mapping, Optional

from .engine import DEFAULT_BATCH_SIZE
from .redistribution import CAP_POLICIES, CAP_REJECT

_BOOLEAN_TRUE = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Config:
    """Runtime configuration assembled from environment variables and CLI options."""

    snapshot_path: Optional[Path]
    profile_path: Optional[Path]
    output_dir: Path
    batch_size: int = DEFAULT_BATCH_SIZE
    max_workers: int = 1
    withdrawal_cap: str = CAP_REJECT
    verbose: bool = False


def _to_path(value: object | None) -> Optional[Path]:
    if value is None:
        return None
    if isinstance(value, Path):
        return value.expanduser().resolve()
    text = str(value).strip()
    if not text:
        return None
    return Path(text).expanduser().resolve()


def _to_int(value: object | None) -> Optional[int]:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        return int(float(text))
    except ValueError:
        return None


def _flag(value: object | None) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _BOOLEAN_TRUE


def _cap_policy(value: object | None) -> str:
    text = str(value or "").strip().lower()
    return text if text in CAP_POLICIES else CAP_REJECT


def _namespace(cli_args: object | None) -> SimpleNamespace:
    if cli_args is None:
        return SimpleNamespace()
    if isinstance(cli_args, SimpleNamespace):
        return cli_args
    if hasattr(cli_args, "__dict__"):
        return SimpleNamespace(**{k: v for k, v in vars(cli_args).items()})
    return SimpleNamespace()


def load_config(env: Mapping[str, str], cli_args: object | None = None) -> Config:
    """Build a runtime :class:`Config` from environment variables and CLI options."""

    base_dir = Path.cwd().resolve()

    snapshot_path = _to_path(env.get("TENDERCOST_SNAPSHOT"))
    profile_path = _to_path(env.get("TENDERCOST_PROFILE"))
    output_dir = _to_path(env.get("TENDERCOST_OUTPUT_DIR")) or (base_dir / "outputs").resolve()
    batch_size = _to_int(env.get("TENDERCOST_BATCH_SIZE")) or DEFAULT_BATCH_SIZE
    max_workers = _to_int(env.get("TENDERCOST_MAX_WORKERS")) or 1
    withdrawal_cap = _cap_policy(env.get("TENDERCOST_WITHDRAWAL_CAP"))
    verbose = _flag(env.get("TENDERCOST_VERBOSE"))

    cli_ns = _namespace(cli_args)
    if getattr(cli_ns, "snapshot", None):
        snapshot_path = _to_path(cli_ns.snapshot) or snapshot_path
    if getattr(cli_ns, "profile", None):
        profile_path = _to_path(cli_ns.profile) or profile_path
    if getattr(cli_ns, "output_dir", None):
        output_dir = _to_path(cli_ns.output_dir) or output_dir
    if getattr(cli_ns, "batch_size", None) is not None:
        batch_size = int(cli_ns.batch_size)
    if getattr(cli_ns, "max_workers", None) is not None:
        max_workers = int(cli_ns.max_workers)
    if getattr(cli_ns, "withdrawal_cap", None):
        withdrawal_cap = _cap_policy(cli_ns.withdrawal_cap)
    if getattr(cli_ns, "verbose", False):
        verbose = bool(cli_ns.verbose)

    return Config(
        snapshot_path=snapshot_path,
        profile_path=profile_path,
        output_dir=output_dir,
        batch_size=max(1, batch_size),
        max_workers=max(1, max_workers),
        withdrawal_cap=withdrawal_cap,
        verbose=verbose,
    )


__all__ = ["Config", "load_config"]
