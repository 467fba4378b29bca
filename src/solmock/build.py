# SPDX-License-Identifier: AGPL-3.0

import json
import os
import traceback

from .config import Config as SolmockConfig
from .config import default_config
from .exceptions import ArtifactNotFound
from .logs import debug, warn


def split_qualified_name(name: str) -> tuple[str | None, str]:
    """Split `path/to/File.sol:Name` into (`File.sol`, `Name`)"""

    if ":" not in name:
        return None, name
    path, contract_name = name.rsplit(":", 1)
    return os.path.basename(path), contract_name


def parse_build_out(args: SolmockConfig) -> dict:
    result = {}  # source filename -> contract name -> json

    out_path = os.path.join(args.root, args.forge_build_out)
    if not os.path.exists(out_path):
        raise ArtifactNotFound(
            f"The build output directory `{out_path}` does not exist"
        )

    for sol_dirname in os.listdir(out_path):  # for each source filename
        if not sol_dirname.endswith(".sol"):
            continue

        sol_path = os.path.join(out_path, sol_dirname)
        if not os.path.isdir(sol_path):
            continue

        for json_filename in os.listdir(sol_path):  # for each contract name
            if not json_filename.endswith(".json") or json_filename.startswith("."):
                continue

            json_path = os.path.join(sol_path, json_filename)
            try:
                with open(json_path, encoding="utf8") as f:
                    json_out = json.load(f)
            except Exception as err:
                warn(f"Skipped {json_filename} due to parsing failure: {err}")
                if args.debug:
                    traceback.print_exc()
                continue

            # cut off compiler version number as well
            contract_name = json_filename.split(".")[0]
            result.setdefault(sol_dirname, {})[contract_name] = {
                "abi": json_out.get("abi", []),
                "storageLayout": json_out.get("storageLayout"),
            }

    return result


def parse_hardhat_artifacts(args: SolmockConfig) -> dict:
    result = {}  # source filename -> contract name -> json

    artifacts_path = os.path.join(args.root, args.hardhat_artifacts)
    if not os.path.exists(artifacts_path):
        raise ArtifactNotFound(
            f"The artifacts directory `{artifacts_path}` does not exist"
        )

    for dirpath, dirnames, filenames in os.walk(artifacts_path):
        # build-info holds the full compiler output, read only on demand
        dirnames[:] = [d for d in dirnames if d != "build-info"]

        for filename in filenames:
            if not filename.endswith(".json") or filename.endswith(".dbg.json"):
                continue

            json_path = os.path.join(dirpath, filename)
            try:
                with open(json_path, encoding="utf8") as f:
                    json_out = json.load(f)
                contract_name = json_out["contractName"]
                source_name = json_out["sourceName"]
            except Exception as err:
                debug(f"Skipped {json_path}: {type(err).__name__}: {err}")
                continue

            result.setdefault(os.path.basename(source_name), {})[contract_name] = {
                "abi": json_out.get("abi", []),
                "storageLayout": _hardhat_storage_layout(
                    json_path, source_name, contract_name
                ),
            }

    return result


def _hardhat_storage_layout(
    json_path: str, source_name: str, contract_name: str
) -> dict | None:
    dbg_path = json_path[: -len(".json")] + ".dbg.json"
    try:
        with open(dbg_path, encoding="utf8") as f:
            build_info = json.load(f)["buildInfo"]
        build_info_path = os.path.join(os.path.dirname(dbg_path), build_info)
        with open(build_info_path, encoding="utf8") as f:
            output = json.load(f)["output"]
        return output["contracts"][source_name][contract_name].get("storageLayout")
    except (OSError, KeyError, ValueError):
        return None


PARSERS = {
    "forge": parse_build_out,
    "hardhat": parse_hardhat_artifacts,
}


def load_artifact(
    name: str,
    args: SolmockConfig | None = None,
    sources: tuple[str, ...] = ("forge", "hardhat"),
) -> dict:
    """
    Find the abi and storage layout of a contract by (fully qualified) name.
    """

    args = args or default_config()
    filename, contract_name = split_qualified_name(name)

    errors = []
    for source in sources:
        try:
            build_out = PARSERS[source](args)
        except ArtifactNotFound as err:
            errors.append(str(err))
            continue

        matches = [
            contracts[contract_name]
            for sol_filename, contracts in sorted(build_out.items())
            if contract_name in contracts
            and (filename is None or filename == sol_filename)
        ]

        if len(matches) > 1:
            raise ArtifactNotFound(
                f"multiple artifacts found for {name}, use a fully qualified name"
            )
        if matches:
            return matches[0]

        errors.append(f"{contract_name} not found in {source} artifacts")

    raise ArtifactNotFound("; ".join(errors))


def load_storage_layout(name: str, args: SolmockConfig | None = None) -> dict:
    layout = load_artifact(name, args).get("storageLayout")
    if layout is None:
        raise ArtifactNotFound(
            f"no storage layout found for {name}; "
            "compile with `extra_output = [\"storageLayout\"]`"
        )
    return layout
