# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Server descriptor construction from caller input.

Callers send server arguments and environment in several loose shapes
(lists, comma-separated strings, JSON text, KEY=VALUE pairs). Everything is
normalized here, once, into immutable ServerDescriptor objects; the launch class
is decided here too and only read afterwards.
"""

import json
import logging
import os
from dataclasses import replace
from pathlib import Path, PurePath
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from dotenv import dotenv_values

from mcp_host.core.config import Config
from mcp_host.core.errors import ConfigurationError
from mcp_host.mcp_session import LaunchClass, ServerDescriptor

logger = logging.getLogger(__name__)

ENV_MCP_VARIABLES = "ENV_MCP_VARIABLES"

# Runner subcommands that precede the package name (pnpm dlx, npm exec, ...)
_RUNNER_SUBCOMMANDS = {"dlx", "exec", "run", "x"}
# Script stems that say nothing about the server
_GENERIC_STEMS = {"index", "main", "server", "__main__", "app", "cli"}
_GENERIC_DIRS = {"build", "dist", "src", "lib", "bin", "out", ".", ".."}

EnvInput = Union[None, str, Mapping[str, Any]]
ArgsInput = Union[None, str, Sequence[Any]]


def _strip_quotes(value: str) -> str:
    value = value.strip()
    if len(value) >= 1 and value[0] in "\"'":
        value = value[1:]
    if len(value) >= 1 and value[-1] in "\"'":
        value = value[:-1]
    return value


def parse_server_args(args: ArgsInput) -> List[str]:
    """Accept a list or a comma-separated string; trim items, drop empties"""
    if args is None:
        return []
    if isinstance(args, str):
        items = args.split(",")
    else:
        items = [str(a) for a in args]
    return [item.strip() for item in items if item and item.strip()]


def parse_server_env(env: EnvInput) -> Dict[str, str]:
    """
    Accept a mapping, a JSON object string, or 'KEY=VALUE,KEY2=VALUE2'.

    Raises:
        ConfigurationError: JSON that is not an object
    """
    if env is None:
        return {}
    if isinstance(env, Mapping):
        return {str(k): str(v) for k, v in env.items()}

    text = str(env).strip()
    if not text:
        return {}

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        parsed = None
    else:
        if not isinstance(parsed, dict):
            raise ConfigurationError(
                "Server environment must be a JSON object or KEY=VALUE pairs",
                field="serverEnvs",
            )
        return {str(k): str(v) for k, v in parsed.items()}

    result: Dict[str, str] = {}
    for pair in text.split(","):
        if "=" not in pair:
            continue
        key, value = pair.split("=", 1)
        key, value = _strip_quotes(key), _strip_quotes(value)
        if key and value:
            result[key] = value
    return result


def _load_env_file(path: str) -> Dict[str, str]:
    env_path = Path(path)
    if not env_path.exists():
        logger.warning(f"Server env file not found: {env_path}")
        return {}
    values = {k: v for k, v in dotenv_values(env_path).items() if k and v}
    logger.info(f"Loaded {len(values)} server environment variable(s) from {env_path}")
    return values


def _load_env_variable() -> Dict[str, str]:
    raw = os.getenv(ENV_MCP_VARIABLES, "").strip()
    if not raw:
        return {}
    try:
        values = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning(f"Error parsing {ENV_MCP_VARIABLES}: {e}")
        return {}
    if not isinstance(values, dict):
        logger.warning(f"{ENV_MCP_VARIABLES} must be a JSON object")
        return {}
    logger.info(f"Loaded {len(values)} server environment variable(s) from {ENV_MCP_VARIABLES}")
    return {str(k): str(v) for k, v in values.items()}


def resolve_server_env(env: EnvInput, config: Config) -> Dict[str, str]:
    """
    Explicit env wins; otherwise the operator env file, then ENV_MCP_VARIABLES.
    """
    explicit = parse_server_env(env)
    if explicit:
        return explicit
    if config.server_env_file:
        values = _load_env_file(config.server_env_file)
        if values:
            return values
    return _load_env_variable()


def _launch_tokens(command: str, args: Sequence[str]) -> List[str]:
    executable = PurePath(command).name.lower()
    for suffix in (".cmd", ".exe", ".bat"):
        if executable.endswith(suffix):
            executable = executable[: -len(suffix)]
    return [executable] + [a.lower() for a in args]


def infer_launch_class(command: str, args: Sequence[str], markers: Iterable[str]) -> LaunchClass:
    """Remote-fetch when the launch line starts with a configured package-runner marker"""
    tokens = _launch_tokens(command, args)
    for marker in markers:
        marker_tokens = marker.lower().split()
        if marker_tokens and tokens[: len(marker_tokens)] == marker_tokens:
            return LaunchClass.REMOTE_FETCH
    return LaunchClass.LOCAL


def _package_name(package: str) -> str:
    # @scope/name@1.2.3 -> name
    if package.startswith("@"):
        package = package.split("/", 1)[-1]
    return package.split("@", 1)[0]


def derive_server_name(command: str, args: Sequence[str], launch_class: LaunchClass) -> str:
    """Readable name from the launch line: package for runners, script for local servers"""
    if launch_class is LaunchClass.REMOTE_FETCH:
        for arg in args:
            if arg.startswith("-") or arg.lower() in _RUNNER_SUBCOMMANDS:
                continue
            return _package_name(arg) or PurePath(command).name
        return PurePath(command).name

    for arg in args:
        if arg.startswith("-"):
            continue
        path = PurePath(arg)
        if not path.suffix:
            continue
        if path.stem.lower() not in _GENERIC_STEMS:
            return path.stem
        for parent in path.parents:
            if parent.name and parent.name.lower() not in _GENERIC_DIRS:
                return parent.name
        return path.stem
    return PurePath(command).name


def build_descriptor(
    config: Config,
    command: Optional[str] = None,
    args: ArgsInput = None,
    env: EnvInput = None,
    name: Optional[str] = None,
    launch_class: Optional[str] = None,
) -> ServerDescriptor:
    """
    Build one ServerDescriptor, falling back to the configured default server.

    Raises:
        ConfigurationError: no command, or an unknown launch class
    """
    command = (command or "").strip() or config.default_server_command
    if not command:
        raise ConfigurationError("Server command is required", field="serverCommand")

    parsed_args = parse_server_args(args)
    if args is None and command == config.default_server_command:
        parsed_args = list(config.default_server_args)

    if launch_class:
        try:
            resolved_class = LaunchClass(launch_class)
        except ValueError:
            raise ConfigurationError(
                f"Unknown launch class '{launch_class}'",
                field="launchClass",
                details={"allowed": [c.value for c in LaunchClass]},
            )
    elif config.infer_launch_class:
        resolved_class = infer_launch_class(command, parsed_args, config.remote_markers)
    else:
        resolved_class = LaunchClass.LOCAL

    return ServerDescriptor.create(
        command=command,
        args=parsed_args,
        env=resolve_server_env(env, config),
        name=name or derive_server_name(command, parsed_args, resolved_class),
        launch_class=resolved_class,
    )


def dedupe_names(descriptors: Sequence[ServerDescriptor]) -> List[ServerDescriptor]:
    """Suffix repeated names (-2, -3, ...) so results keyed by name never collide"""
    seen: Dict[str, int] = {}
    taken = {d.name for d in descriptors}
    result: List[ServerDescriptor] = []
    for descriptor in descriptors:
        count = seen.get(descriptor.name, 0) + 1
        seen[descriptor.name] = count
        if count == 1:
            result.append(descriptor)
            continue
        suffix = count
        candidate = f"{descriptor.name}-{suffix}"
        while candidate in taken:
            suffix += 1
            candidate = f"{descriptor.name}-{suffix}"
        taken.add(candidate)
        result.append(replace(descriptor, name=candidate))
    return result


def build_descriptors(config: Config, servers: Iterable[Mapping[str, Any]]) -> List[ServerDescriptor]:
    """Build descriptors for a list of server entries (command, args, env, name, launch_class)"""
    descriptors = [
        build_descriptor(
            config,
            command=server.get("command"),
            args=server.get("args"),
            env=server.get("env"),
            name=server.get("name"),
            launch_class=server.get("launch_class"),
        )
        for server in servers
    ]
    return dedupe_names(descriptors)
