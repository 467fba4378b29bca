# SPDX-License-Identifier: AGPL-3.0

import argparse
import os
import sys
from collections import OrderedDict
from collections.abc import Callable, Generator
from dataclasses import MISSING, dataclass, fields
from dataclasses import field as dataclass_field
from typing import Any

import toml

from .exceptions import ConfigError
from .logs import warn

# common strings
internal = "internal"

# groups
inspection, interception, build, debugging = (
    "Storage inspection options",
    "Interception options",
    "Build options",
    "Debugging options",
)


class ConfigSource:
    void = "void"
    default = "default"
    config_file = "config-file"
    command_line = "command-line"
    sandbox = "sandbox"


# helper to define config fields
def arg(
    help: str,
    global_default: Any,
    metavar: str | None = None,
    group: str | None = None,
    choices: str | None = None,
    short: str | None = None,
    countable: bool = False,
    global_default_str: str | None = None,
    action: Callable = None,
):
    return dataclass_field(
        default=None,
        metadata={
            "help": help,
            "global_default": global_default,
            "metavar": metavar,
            "group": group,
            "choices": choices,
            "short": short,
            "countable": countable,
            "global_default_str": global_default_str,
            "action": action,
        },
    )


def ensure_non_empty(values: list | set | dict) -> list:
    if not values:
        raise ValueError("required a non-empty list")
    return values


def parse_csv(values: str, sep: str = ",") -> Generator[Any, None, None]:
    """Parse a CSV string and return a generator of *non-empty* values."""
    return (x for _x in values.split(sep) if (x := _x.strip()))


class ParseCSV(argparse.Action):
    def __call__(self, parser, namespace, values, option_string=None):
        values = ParseCSV.parse(values)
        setattr(namespace, self.dest, values)

    @staticmethod
    def parse(values: str | list) -> list[str]:
        if isinstance(values, list):
            return values
        return list(parse_csv(values))

    @staticmethod
    def unparse(values: list[str]) -> str:
        return ",".join([str(v) for v in values])


class ParseHexCode(argparse.Action):
    def __call__(self, parser, namespace, values, option_string=None):
        values = ParseHexCode.parse(values)
        setattr(namespace, self.dest, values)

    @staticmethod
    def parse(values: str | bytes) -> bytes:
        if isinstance(values, bytes):
            return values
        values = values.strip()
        code = bytes.fromhex(values[2:] if values.startswith("0x") else values)
        return ensure_non_empty(code)

    @staticmethod
    def unparse(values: bytes) -> str:
        return "0x" + values.hex()


@dataclass(frozen=True)
class Config:
    """Configuration object for solmock.

    Don't instantiate this directly, since all fields have default value None. Instead, use:

     - `default_config()` to get the default configuration with the actual default values
     - `with_overrides()` to create a new configuration object with some fields overridden
    """

    ### Internal fields (not used to generate arg parsers)

    _parent: "Config" = dataclass_field(
        repr=False,
        metadata={
            internal: True,
        },
    )

    _source: str = dataclass_field(
        metadata={
            internal: True,
        },
    )

    ### General options
    #
    # Fields only hold the values that were explicitly set on this layer.
    # Actual default values live in the `global_default` metadata and are
    # materialized by `default_config()`, on top of which other layers
    # (config file, command line, sandbox arguments) are stacked.

    root: str = arg(
        help="project root directory",
        metavar="ROOT",
        global_default=os.getcwd,
        global_default_str="current working directory",
    )

    config: str = arg(
        help="path to the config file",
        metavar="FILE",
        global_default=lambda: os.path.join(os.getcwd(), "solmock.toml"),
        global_default_str="ROOT/solmock.toml",
    )

    ### Storage inspection options

    contract: str = arg(
        help="name of the contract whose storage layout is inspected",
        global_default="",
        metavar="CONTRACT_NAME",
        group=inspection,
    )

    variable: str = arg(
        help="storage variable to locate; prints the whole layout if omitted",
        global_default="",
        metavar="LABEL",
        group=inspection,
    )

    keys: str = arg(
        help="mapping keys, array indices or struct members leading to the slot",
        global_default="",
        metavar="KEY1,KEY2,...",
        group=inspection,
        action=ParseCSV,
    )

    ### Interception options

    fake_code: str = arg(
        help="placeholder bytecode installed at fake contract addresses",
        global_default="0x00",
        metavar="HEX_CODE",
        group=interception,
        action=ParseHexCode,
    )

    trace_calls: bool = arg(
        help="log every intercepted call and its programmed outcome",
        global_default=False,
        group=interception,
    )

    ### Build options

    forge_build_out: str = arg(
        help="forge build artifacts directory name",
        metavar="DIRECTORY_NAME",
        global_default="out",
        group=build,
    )

    hardhat_artifacts: str = arg(
        help="hardhat artifacts directory name",
        metavar="DIRECTORY_NAME",
        global_default="artifacts",
        group=build,
    )

    ### Debugging options

    verbose: int = arg(
        help="increase verbosity levels: -v, -vv, -vvv, ...",
        global_default=0,
        group=debugging,
        short="v",
        countable=True,
    )

    debug: bool = arg(
        help="run in debug mode",
        global_default=False,
        group=debugging,
    )

    ### Methods

    def __getattribute__(self, name):
        """Look up values in parent object if they are not set in the current object.

        This is because we consider the current object to override its parent.

        Because of this, printing a Config object will show a "flattened/resolved" view of the configuration.
        """

        # look up value in current object
        value = object.__getattribute__(self, name)
        if value is not None:
            return value

        # look up value in parent object
        parent = object.__getattribute__(self, "_parent")
        if parent is not None:
            return getattr(parent, name)

        return value

    def with_overrides(self, source: str, **overrides):
        """Create a new configuration object with some fields overridden.

        Use vars(namespace) to pass in the arguments from an argparse parser or
        just a dictionary with the overrides (e.g. from a toml or json file)."""

        try:
            return Config(_parent=self, _source=source, **overrides)
        except TypeError as e:
            name = str(e).split()[-1]
            if source == ConfigSource.sandbox:
                raise ConfigError(f"unrecognized sandbox option: {name}") from e

            # follow argparse error message format and behavior
            warn(f"error: unrecognized argument: {name}")
            sys.exit(2)

    def value_with_source(self, name: str) -> tuple[Any, str]:
        # look up value in current object
        value = object.__getattribute__(self, name)
        if value is not None:
            return (value, self._source)

        # look up value in parent object
        parent = self._parent
        if parent is not None:
            return parent.value_with_source(name)

        return (value, self._source)

    def values(self):
        skip_empty = self._parent is not None

        for field in fields(self):
            if field.metadata.get(internal):
                continue

            field_value = object.__getattribute__(self, field.name)
            if skip_empty and field_value is None:
                continue

            yield field.name, field_value

    def values_by_layer(self) -> dict[str, tuple[str, Any]]:
        # source -> {field, value}
        if self._parent is None:
            return OrderedDict([(self._source, dict(self.values()))])

        values = self._parent.values_by_layer()
        values[self._source] = dict(self.values())
        return values

    def formatted_layers(self) -> str:
        lines = []
        for layer, values in self.values_by_layer().items():
            lines.append(f"{layer}:")
            for field, value in values.items():
                lines.append(f"  {field}: {value}")
        return "\n".join(lines)


def resolve_config_files(args: list[str], include_missing: bool = False) -> list[str]:
    config_parser = argparse.ArgumentParser()
    config_parser.add_argument(
        "--root",
        metavar="DIRECTORY",
        default=os.getcwd(),
    )

    config_parser.add_argument("--config", metavar="FILE")

    # beware: errors and help flags will cause a system exit
    args = config_parser.parse_known_args(args)[0]

    # if --config is passed explicitly, use that
    # no check for existence is done here, we don't want to silently ignore
    # missing config files when they are requested explicitly
    if args.config:
        return [args.config]

    # we expect to find solmock.toml in the project root directory
    default_config_path = os.path.join(args.root, "solmock.toml")
    if not include_missing and not os.path.exists(default_config_path):
        return []

    return [default_config_path]


class TomlParser:
    def parse_file(self, toml_file_path: str) -> dict:
        with open(toml_file_path) as f:
            return self.parse_str(f.read(), source=toml_file_path)

    # exposed for easier testing
    def parse_str(self, file_contents: str, source: str = "solmock.toml") -> dict:
        parsed = toml.loads(file_contents)
        return self.parse_dict(parsed, source=source)

    # exposed for easier testing
    def parse_dict(self, parsed: dict, source: str = "solmock.toml") -> dict:
        if len(parsed) != 1:
            warn(
                f"error: expected a single `[global]` section in the toml file, "
                f"got {len(parsed)}: {', '.join(parsed.keys())}"
            )
            sys.exit(2)

        data = parsed.get("global")
        if data is None:
            for key in parsed:
                warn(
                    f"error: expected a `[global]` section in the toml file, got '{key}'"
                )
                sys.exit(2)

        # gather custom actions
        actions = {
            field.name: field.metadata["action"]
            for field in fields(Config)
            if field.metadata.get("action")
        }

        result = {}
        for key, value in data.items():
            key = key.replace("-", "_")
            action = actions.get(key)
            result[key] = action.parse(value) if action else value
        return result


def _create_default_config() -> "Config":
    values = {}

    for field in fields(Config):
        # we build the default config by looking at the global_default metadata field
        default = field.metadata.get("global_default", MISSING)
        if default == MISSING:
            continue

        # retrieve the default value
        raw_value = default() if callable(default) else default

        # parse the default value, if a custom parser is provided
        action = field.metadata.get("action", None)
        values[field.name] = action.parse(raw_value) if action else raw_value

    return Config(_parent=None, _source=ConfigSource.default, **values)


def _create_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="solmock",
        description="inspect contract storage layouts",
    )

    groups = {
        None: parser,
    }

    # add arguments from the Config dataclass
    for field_info in fields(Config):
        # skip internal fields
        if field_info.metadata.get(internal, False):
            continue

        long_name = f"--{field_info.name.replace('_', '-')}"
        names = [long_name]

        short_name = field_info.metadata.get("short", None)
        if short_name:
            names.append(f"-{short_name}")

        arg_help = field_info.metadata.get("help", "")
        metavar = field_info.metadata.get("metavar", None)
        group_name = field_info.metadata.get("group", None)
        if group_name not in groups:
            groups[group_name] = parser.add_argument_group(group_name)

        group = groups[group_name]

        if field_info.type is bool:
            group.add_argument(*names, help=arg_help, action="store_true", default=None)
        elif field_info.metadata.get("countable", False):
            group.add_argument(*names, help=arg_help, action="count")
        else:
            # add the default value to the help text
            default = field_info.metadata.get("global_default", None)
            if default is not None:
                default_str = field_info.metadata.get("global_default_str", None)
                default_str = repr(default) if default_str is None else default_str
                arg_help += f" (default: {default_str})"

            kwargs = {
                "help": arg_help,
                "metavar": metavar,
                "type": field_info.type,
            }
            if choices := field_info.metadata.get("choices", None):
                kwargs["choices"] = choices
            if action := field_info.metadata.get("action", None):
                kwargs["action"] = action
            group.add_argument(*names, **kwargs)

    return parser


def _create_toml_parser() -> TomlParser:
    return TomlParser()


# public singleton accessors
def default_config() -> "Config":
    return _default_config


def arg_parser() -> argparse.ArgumentParser:
    return _arg_parser


def toml_parser():
    return _toml_parser


def load_config(args: list[str] | None = None) -> Config:
    """Layer the config file (if any) and command line arguments on top of the defaults."""

    args = [] if args is None else args
    config = default_config()

    for config_file in resolve_config_files(args):
        data = toml_parser().parse_file(config_file)
        config = config.with_overrides(ConfigSource.config_file, **data)

    parsed = arg_parser().parse_args(args)
    return config.with_overrides(ConfigSource.command_line, **vars(parsed))


# init module-level singletons
_arg_parser = _create_arg_parser()
_default_config = _create_default_config()
_toml_parser = _create_toml_parser()
