"""
TFA Guard Fee Estimator

Computes the value a caller must attach to a guard-forwarded wallet message
so that, after the guard's own processing and the relay of the forwarded
message, the wallet still has enough to execute every output action.

The model is the host ledger's published fee formula:

    gas_fee(g)        = flat_gas_price                                  if g <= flat_gas_limit
                      = flat_gas_price + ceil((g - flat_gas_limit) * gas_price / 2^16)
    forward_fee(b, c) = lump_price + ceil((bit_price * b + cell_price * c) / 2^16)

Prices are in the ledger's smallest unit and, like the ledger's own config,
expressed as fixed-point values with 16 fractional bits.
"""

from dataclasses import dataclass
from typing import Any, Dict, Union

from .canonicalization import canonicalize


FIXED_POINT_SHIFT = 16
CELL_BITS = 1023


def _ceil_shift(value: int) -> int:
    return -((-value) >> FIXED_POINT_SHIFT)


@dataclass(frozen=True)
class FeeSchedule:
    """Basechain fee schedule and the gas profile of the guard and the wallet."""
    gas_price: int = 26214400            # 400 units per gas
    flat_gas_limit: int = 100
    flat_gas_price: int = 40000
    lump_price: int = 400000
    bit_price: int = 26214400
    cell_price: int = 2621440000

    guard_gas_per_request: int = 3100
    guard_gas_per_signature: int = 700
    wallet_base_gas: int = 4200
    wallet_gas_per_output: int = 600
    wallet_gas_per_extended_action: int = 5500
    extended_action_storage_bits: int = 267 + 1  # address + dictionary flag

    def gas_fee(self, gas: int) -> int:
        if gas <= self.flat_gas_limit:
            return self.flat_gas_price
        return self.flat_gas_price + _ceil_shift((gas - self.flat_gas_limit) * self.gas_price)

    def forward_fee(self, bits: int, cells: int) -> int:
        return self.lump_price + _ceil_shift(self.bit_price * bits + self.cell_price * cells)


DEFAULT_SCHEDULE = FeeSchedule()


def message_size(message: Union[bytes, Dict[str, Any]]) -> Dict[str, int]:
    """Size of a message in bits and cells, measured on its canonical encoding."""
    encoded = message if isinstance(message, (bytes, bytearray)) else canonicalize(message)
    bits = len(encoded) * 8
    cells = max(1, -(-bits // CELL_BITS))
    return {"bits": bits, "cells": cells}


def _require_count(value: int, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"{name} must be a non-negative integer")


def estimate_attached_value(
    forward_message: Union[bytes, Dict[str, Any]],
    output_message_count: int,
    extended_action_count: int,
    schedule: FeeSchedule = DEFAULT_SCHEDULE,
) -> int:
    """
    Minimum value to attach to the forwarded wallet message.

    Covers relaying the forwarded message itself, the wallet's compute for
    its output and extended actions, one relay fee per output message, and
    the storage each extended action adds. Pure; no state is read.
    """
    _require_count(output_message_count, "output_message_count")
    _require_count(extended_action_count, "extended_action_count")

    size = message_size(forward_message)
    relay = schedule.forward_fee(size["bits"], size["cells"])

    wallet_gas = (
        schedule.wallet_base_gas
        + schedule.wallet_gas_per_output * output_message_count
        + schedule.wallet_gas_per_extended_action * extended_action_count
    )
    compute = schedule.gas_fee(wallet_gas)

    outputs = schedule.lump_price * output_message_count
    storage = extended_action_count * _ceil_shift(schedule.bit_price * schedule.extended_action_storage_bits)

    return relay + compute + outputs + storage


def estimate_guard_fee(signature_count: int = 2, schedule: FeeSchedule = DEFAULT_SCHEDULE) -> int:
    """The guard's own processing cost for one request."""
    _require_count(signature_count, "signature_count")
    gas = schedule.guard_gas_per_request + schedule.guard_gas_per_signature * signature_count
    return schedule.gas_fee(gas)


def estimate_total_cost(
    forward_message: Union[bytes, Dict[str, Any]],
    output_message_count: int,
    extended_action_count: int,
    schedule: FeeSchedule = DEFAULT_SCHEDULE,
) -> Dict[str, int]:
    """Breakdown of everything a send-actions request costs end to end."""
    attached = estimate_attached_value(forward_message, output_message_count, extended_action_count, schedule)
    guard = estimate_guard_fee(2, schedule)
    return {
        "attached_value": attached,
        "guard_fee": guard,
        "total": attached + guard,
    }
