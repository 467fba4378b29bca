# SPDX-License-Identifier: AGPL-3.0

import sys

from rich import get_console
from rich.markup import escape
from rich.table import Table

from .build import load_storage_layout
from .config import Config, load_config
from .exceptions import ArtifactNotFound, SolmockException
from .logs import debug, error, set_verbosity
from .storage import StorageLayout, locate


def layout_table(name: str, layout: StorageLayout) -> Table:
    table = Table(title=f"{name} storage layout")
    table.add_column("slot", justify="right")
    table.add_column("offset", justify="right")
    table.add_column("label")
    table.add_column("type")
    table.add_column("bytes", justify="right")

    for desc in layout:
        table.add_row(
            str(desc.slot),
            str(desc.offset),
            desc.label,
            desc.type.label,
            str(desc.type.number_of_bytes),
        )
    return table


def _main(args: Config) -> int:
    if not args.contract:
        error("missing contract name, use --contract CONTRACT_NAME")
        return 1

    try:
        layout = StorageLayout.from_json(load_storage_layout(args.contract, args))
    except ArtifactNotFound as err:
        error(str(err))
        return 1

    console = get_console()

    if not args.variable:
        console.print(layout_table(args.contract, layout))
        return 0

    try:
        slot, offset, typ = locate(layout[args.variable], args.keys)
    except SolmockException as err:
        error(str(err))
        return 1

    path = "".join(f"[{key}]" for key in args.keys)
    console.print(escape(f"{args.variable}{path}: {typ.label}"))
    console.print(f"  slot:   {hex(slot)}")
    console.print(f"  offset: {offset}")
    return 0


# entrypoint for the `solmock` script
def main() -> int:
    args = load_config(sys.argv[1:])
    set_verbosity(args.verbose, args.debug)
    debug(f"config layers:\n{args.formatted_layers()}")
    return _main(args)


# entrypoint for `python -m solmock`
if __name__ == "__main__":
    sys.exit(main())
