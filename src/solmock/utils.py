# SPDX-License-Identifier: AGPL-3.0

import asyncio
import inspect
import os
import re
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from eth_hash.auto import keccak
from eth_utils import is_address, to_checksum_address

WORD_SIZE = 32

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def stripped(hexstring: str) -> str:
    """Remove 0x prefix from hexstring"""
    return hexstring[2:] if hexstring.startswith("0x") else hexstring


def decode_hex(hexstring: str) -> bytes | None:
    try:
        # not checking if length is even because fromhex accepts spaces
        return bytes.fromhex(stripped(hexstring))
    except ValueError:
        return None


def is_hexstr(x: Any) -> bool:
    return isinstance(x, str) and re.fullmatch(r"0x([0-9a-fA-F]{2})*", x) is not None


def hexify(x) -> str:
    if isinstance(x, int):
        return f"0x{x:02x}"
    elif isinstance(x, bytes | bytearray):
        return "0x" + bytes(x).hex()
    elif isinstance(x, list | tuple):
        return f"[{', '.join(map(hexify, x))}]"
    else:
        return str(x)


#
# 32-byte words
#


def uint256(x: int) -> int:
    return x & ((1 << 256) - 1)


def to_word(x: int) -> bytes:
    return uint256(x).to_bytes(WORD_SIZE, "big")


def from_word(x: bytes) -> int:
    return int.from_bytes(x, "big")


def sha3(data: bytes) -> int:
    """keccak256 of data, as an integer slot number"""
    return int.from_bytes(keccak(data), "big")


def selector_of(sig: str) -> str:
    """0x-prefixed function selector of a canonical signature"""
    return "0x" + keccak(sig.encode()).hex()[:8]


#
# addresses
#


def random_address() -> str:
    return to_checksum_address(os.urandom(20))


def normalize_address(addr: Any) -> str:
    if isinstance(addr, bytes) and len(addr) == 20:
        return to_checksum_address(addr)
    if isinstance(addr, int) and 0 <= addr < 2**160:
        return to_checksum_address(addr.to_bytes(20, "big"))
    if isinstance(addr, str) and is_address(addr.lower()):
        return to_checksum_address(addr.lower())
    raise ValueError(f"invalid address: {addr!r}")


def same_address(a: str | None, b: str | None) -> bool:
    if a is None or b is None:
        return False
    return a.lower() == b.lower()


#
# misc
#


def humanize_times(n: int) -> str:
    return {1: "once", 2: "twice", 3: "thrice"}.get(n, f"{n} times")


def run_sync(value: Any) -> Any:
    """
    Drive an awaitable to completion on a private event loop.

    When this thread is already running a loop (the fake was called from a
    coroutine), the private loop runs on a worker thread and the caller
    blocks until it is done.
    """

    if not inspect.isawaitable(value):
        return value

    async def wrap():
        return await value

    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(wrap())

    with ThreadPoolExecutor(max_workers=1) as executor:
        return executor.submit(asyncio.run, wrap()).result()


def green(text: str) -> str:
    return f"\033[32m{text}\033[0m"


def red(text: str) -> str:
    return f"\033[31m{text}\033[0m"


def yellow(text: str) -> str:
    return f"\033[33m{text}\033[0m"


def cyan(text: str) -> str:
    return f"\033[36m{text}\033[0m"


def magenta(text: str) -> str:
    return f"\033[95m{text}\033[0m"
