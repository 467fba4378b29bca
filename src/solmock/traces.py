# SPDX-License-Identifier: AGPL-3.0

from typing import Any

from .abi import Struct
from .history import ContractCall, WatchableFunction
from .utils import cyan, green, hexify, magenta, red, yellow
from .vm import CallOutcome, Faulted, Returned, Reverted


def rendered_value(value: Any) -> str:
    if isinstance(value, Struct):
        value = value.to_dict()
    if isinstance(value, bytes):
        return hexify(value)
    if isinstance(value, dict):
        items = ", ".join(f"{k}: {rendered_value(v)}" for k, v in value.items())
        return f"{{{items}}}"
    if isinstance(value, list | tuple):
        return f"[{', '.join(rendered_value(v) for v in value)}]"
    return repr(value) if isinstance(value, str) else str(value)


def rendered_call(name: str, call: ContractCall) -> str:
    if isinstance(call.args, str):
        args_str = call.args
    else:
        args_str = ", ".join(rendered_value(arg) for arg in call.args)

    value_str = f"{{value: {call.value}}}" if call.value else ""
    delegated_str = (
        f" {yellow('delegated from')} {call.delegated_from}"
        if call.delegated_from
        else ""
    )
    return (
        f"{magenta(f'#{call.nonce}')} {call.target}::{name}{value_str}"
        f"({cyan(args_str)}){delegated_str}"
    )


def rendered_outcome(outcome: CallOutcome) -> str:
    if isinstance(outcome, Returned):
        return green(f"↩ {hexify(outcome.data)}")
    if isinstance(outcome, Reverted):
        return red(f"↩ REVERT {outcome.reason!r}")
    if isinstance(outcome, Faulted):
        return red(f"↩ (error: {outcome.error!r})")
    raise ValueError(outcome)


def rendered_history(watchable: WatchableFunction) -> str:
    lines = [f"{watchable.name}: {watchable.call_count} call(s)"]
    for call in watchable.call_history:
        lines.append("    " + rendered_call(watchable.name, call))
    return "\n".join(lines)
