"""Environment and file-based configuration for guarded callbacks.

This module loads default guard settings from TOML files and environment
variables. A file holds named profiles::

    [profile.default]
    min_delay = 0.0
    timeout = 5.0
    log_extra_mode = "flatten"

Environment variables override file values:

* ``CALLGUARD_CONFIG_FILE``: path of the TOML file when none is given.
* ``CALLGUARD_MIN_DELAY``: minimum delay in seconds.
* ``CALLGUARD_TIMEOUT``: timeout in seconds. Empty or ``none`` clears it.
* ``CALLGUARD_LOG_EXTRA_MODE``: one of ``dict``, ``flatten``, ``json``.
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, replace
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union, cast

from typing_extensions import Self, TypeAlias, TypedDict

import callguard.common
import callguard.exceptions
import callguard.guard
from callguard._log_utils import GUARD_LOG_EXTRA_MODES, GuardLogExtraMode

logger = logging.getLogger(__name__)

DataSource: TypeAlias = Union[
    Path, str, bytes
]  # str represents file contents, bytes represents raw data

ENV_CONFIG_FILE = "CALLGUARD_CONFIG_FILE"
ENV_MIN_DELAY = "CALLGUARD_MIN_DELAY"
ENV_TIMEOUT = "CALLGUARD_TIMEOUT"
ENV_LOG_EXTRA_MODE = "CALLGUARD_LOG_EXTRA_MODE"


# We define a typed dictionary for what a profile looks like as TOML.
class GuardConfigDict(TypedDict, total=False):
    """Dictionary representation of a guard config profile for TOML."""

    min_delay: float
    timeout: Optional[float]
    log_extra_mode: str


def _read_source(source: Optional[DataSource]) -> Optional[str]:
    if source is None:
        return None
    if isinstance(source, Path):
        try:
            return source.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as err:
            raise callguard.exceptions.InvalidArgumentError(
                f"Cannot read config file {source}"
            ) from err
    if isinstance(source, str):
        return source
    if isinstance(source, bytes):
        try:
            return source.decode("utf-8")
        except UnicodeDecodeError as err:
            raise callguard.exceptions.InvalidArgumentError(
                "Guard config data is not valid UTF-8"
            ) from err
    raise callguard.exceptions.InvalidArgumentError(
        f"Source must be one of pathlib.Path, str, or bytes, but got {type(source).__name__}"
    )


def _parse_seconds(value: Any, field: str) -> timedelta:
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError as err:
            raise callguard.exceptions.InvalidArgumentError(
                f"{field} must be a number of seconds, got {value!r}"
            ) from err
    return callguard.common._to_timedelta(value, field)


def _parse_mode(value: Any) -> GuardLogExtraMode:
    if value not in GUARD_LOG_EXTRA_MODES:
        raise callguard.exceptions.InvalidArgumentError(
            f"log_extra_mode must be one of {', '.join(GUARD_LOG_EXTRA_MODES)}, got {value!r}"
        )
    return cast(GuardLogExtraMode, value)


@dataclass(frozen=True)
class GuardConfig:
    """Default guard settings loaded from TOML and environment variables."""

    min_delay: timedelta = timedelta()
    """Default minimum delay."""
    timeout: Optional[timedelta] = None
    """Default timeout, if any."""
    log_extra_mode: GuardLogExtraMode = "dict"
    """How guard details are added to log record extra."""

    def __post_init__(self) -> None:
        callguard.common.GuardOptions(
            min_delay=self.min_delay, timeout=self.timeout
        )._validate()
        _parse_mode(self.log_extra_mode)

    def to_dict(self) -> GuardConfigDict:
        """Convert to a dictionary that can be used for TOML serialization."""
        d: GuardConfigDict = {
            "min_delay": self.min_delay.total_seconds(),
            "log_extra_mode": self.log_extra_mode,
        }
        if self.timeout is not None:
            d["timeout"] = self.timeout.total_seconds()
        return d

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> Self:
        """Create a GuardConfig from a dictionary.

        Raises:
            callguard.exceptions.InvalidArgumentError: A value has the wrong
                type or an unknown key is present.
        """
        unknown = set(d) - set(GuardConfigDict.__annotations__)
        if unknown:
            raise callguard.exceptions.InvalidArgumentError(
                f"Unknown guard config keys: {', '.join(sorted(unknown))}"
            )
        timeout = d.get("timeout")
        return cls(
            min_delay=_parse_seconds(d.get("min_delay", 0), "min_delay"),
            timeout=_parse_seconds(timeout, "timeout") if timeout is not None else None,
            log_extra_mode=_parse_mode(d.get("log_extra_mode", "dict")),
        )

    @classmethod
    def load(
        cls,
        *,
        profile: str = "default",
        config_source: Optional[DataSource] = None,
        disable_file: bool = False,
        disable_env: bool = False,
        override_env_vars: Optional[Mapping[str, str]] = None,
    ) -> Self:
        """Load a single config profile, applying environment overrides.

        Args:
            profile: Profile to load from the config file.
            config_source: Configuration source. If not provided, the path in
                ``CALLGUARD_CONFIG_FILE`` is used, if set.
            disable_file: If true, file loading is disabled.
            disable_env: If true, environment variable loading and overriding
                is disabled. This takes precedence over ``override_env_vars``.
            override_env_vars: The environment to use for loading and
                overrides. If not provided, the current process's environment
                is used.

        Returns:
            The guard configuration.

        Raises:
            callguard.exceptions.InvalidArgumentError: The file cannot be read
                or parsed, or a value is invalid.
        """
        env: Mapping[str, str] = {}
        if not disable_env:
            env = os.environ if override_env_vars is None else override_env_vars

        raw: Dict[str, Any] = {}
        if not disable_file:
            if config_source is None and env.get(ENV_CONFIG_FILE):
                config_source = Path(env[ENV_CONFIG_FILE])
            raw = dict(_load_profile(config_source, profile))

        config = cls.from_dict(raw)
        return config._with_env(env) if env else config

    def _with_env(self, env: Mapping[str, str]) -> Self:
        overrides: Dict[str, Any] = {}
        if ENV_MIN_DELAY in env:
            overrides["min_delay"] = _parse_seconds(env[ENV_MIN_DELAY], ENV_MIN_DELAY)
        if ENV_TIMEOUT in env:
            value = env[ENV_TIMEOUT].strip()
            overrides["timeout"] = (
                None
                if value.lower() in ("", "none")
                else _parse_seconds(value, ENV_TIMEOUT)
            )
        if ENV_LOG_EXTRA_MODE in env:
            overrides["log_extra_mode"] = _parse_mode(env[ENV_LOG_EXTRA_MODE])
        if overrides:
            logger.debug("Applying guard config overrides from environment: %s", sorted(overrides))
        return replace(self, **overrides)

    def to_options(self, **overrides: Any) -> callguard.common.GuardOptions:
        """Create :py:class:`callguard.common.GuardOptions` from this config.

        Keyword arguments set further option fields such as ``on_timeout`` and
        ``name``.
        """
        options = callguard.common.GuardOptions(
            min_delay=self.min_delay, timeout=self.timeout
        )
        options = replace(options, **overrides)
        options._validate()
        return options

    def configure_logging(
        self, adapter: Optional[callguard.guard.LoggerAdapter] = None
    ) -> None:
        """Apply the log settings to an adapter, by default
        :py:data:`callguard.guard.logger`.
        """
        (adapter or callguard.guard.logger).guard_extra_mode = self.log_extra_mode


def _load_profile(source: Optional[DataSource], profile: str) -> Mapping[str, Any]:
    text = _read_source(source)
    if text is None:
        return {}
    try:
        doc = tomllib.loads(text)
    except tomllib.TOMLDecodeError as err:
        raise callguard.exceptions.InvalidArgumentError(
            "Invalid guard config TOML"
        ) from err
    profiles = doc.get("profile", {})
    if not isinstance(profiles, dict):
        raise callguard.exceptions.InvalidArgumentError(
            "Guard config 'profile' must be a table"
        )
    found = profiles.get(profile)
    if found is None:
        logger.debug("Guard config profile %r not found, using defaults", profile)
        return {}
    if not isinstance(found, dict):
        raise callguard.exceptions.InvalidArgumentError(
            f"Guard config profile {profile!r} must be a table"
        )
    return found
