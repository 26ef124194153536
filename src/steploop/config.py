from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import tomllib

from .ui import parse_output_choice
from .util import env_flag, env_int, env_value

CONFIG_FILENAME = ".steploop.toml"
_VERBOSITIES = ("quiet", "normal", "verbose")


class ConfigValidationError(ValueError):
    pass


@dataclass(frozen=True)
class RunnerFileConfig:
    max_iterations: int | None = None
    iteration_pause_ms: int | None = None
    parallel_threshold_ms: int | None = None
    verbosity: str | None = None
    model: str | None = None
    log: bool | None = None
    log_dir: str | None = None
    output: str | None = None


@dataclass(frozen=True)
class SteploopFileConfig:
    repo_root: Path
    path: Path
    runner: RunnerFileConfig = RunnerFileConfig()
    error: str | None = None


def _as_str(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    if not stripped:
        return None
    return stripped


def _as_int(raw: dict[str, Any], key: str, *, minimum: int) -> int | None:
    value = raw.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigValidationError(f"[runner].{key} must be an integer")
    if value < minimum:
        raise ConfigValidationError(f"[runner].{key} must be >= {minimum}")
    return value


def _parse_runner(raw: object) -> RunnerFileConfig:
    if raw is None:
        return RunnerFileConfig()
    if not isinstance(raw, dict):
        raise ConfigValidationError("[runner] must be a table")

    verbosity_raw = raw.get("verbosity")
    verbosity: str | None = None
    if verbosity_raw is not None:
        verbosity = _as_str(verbosity_raw)
        if verbosity not in _VERBOSITIES:
            expected = ", ".join(_VERBOSITIES)
            raise ConfigValidationError(
                f"invalid [runner].verbosity {verbosity_raw!r}; expected one of: {expected}"
            )

    log = raw.get("log")
    if log is not None and not isinstance(log, bool):
        raise ConfigValidationError("[runner].log must be a boolean")

    model_raw = raw.get("model")
    if model_raw is not None and _as_str(model_raw) is None:
        raise ConfigValidationError("[runner].model must be a non-empty string")

    log_dir_raw = raw.get("log_dir")
    if log_dir_raw is not None and _as_str(log_dir_raw) is None:
        raise ConfigValidationError("[runner].log_dir must be a non-empty string")

    try:
        output = parse_output_choice(raw.get("output"), source="[runner].output")
    except ValueError as exc:
        raise ConfigValidationError(str(exc)) from exc

    return RunnerFileConfig(
        max_iterations=_as_int(raw, "max_iterations", minimum=1),
        iteration_pause_ms=_as_int(raw, "iteration_pause_ms", minimum=0),
        parallel_threshold_ms=_as_int(raw, "parallel_threshold_ms", minimum=0),
        verbosity=verbosity,
        model=_as_str(model_raw),
        log=log,
        log_dir=_as_str(log_dir_raw),
        output=output,
    )


def load_config(repo_root: Path) -> SteploopFileConfig:
    path = repo_root / CONFIG_FILENAME
    if not path.is_file():
        return SteploopFileConfig(repo_root=repo_root, path=path)

    try:
        raw = tomllib.loads(path.read_text(encoding="utf-8"))
    except (OSError, tomllib.TOMLDecodeError) as exc:
        return SteploopFileConfig(
            repo_root=repo_root,
            path=path,
            error=f"invalid TOML in {CONFIG_FILENAME}: {exc}",
        )

    try:
        runner = _parse_runner(raw.get("runner"))
    except ConfigValidationError as exc:
        return SteploopFileConfig(
            repo_root=repo_root, path=path, error=f"{CONFIG_FILENAME}: {exc}"
        )
    return SteploopFileConfig(repo_root=repo_root, path=path, runner=runner)


def _env_override(name: str, current: int | None, *, minimum: int) -> int | None:
    value = env_int(name, -1)
    if value < minimum:
        return current
    return value


def apply_env(runner: RunnerFileConfig) -> RunnerFileConfig:
    """Layer STEPLOOP_* environment variables over file settings."""
    return RunnerFileConfig(
        max_iterations=_env_override(
            "STEPLOOP_MAX_ITERATIONS", runner.max_iterations, minimum=1
        ),
        iteration_pause_ms=_env_override(
            "STEPLOOP_PAUSE_MS", runner.iteration_pause_ms, minimum=0
        ),
        parallel_threshold_ms=runner.parallel_threshold_ms,
        verbosity=runner.verbosity,
        model=env_value("STEPLOOP_MODEL") or runner.model,
        log=True if env_flag("STEPLOOP_LOG") else runner.log,
        log_dir=runner.log_dir,
        output=runner.output,
    )
