import typing

from stellar_sdk import Address, scval
from stellar_sdk import xdr as stellar_xdr


def parse_sequence(input_value: str) -> typing.List[str]:
    # Skip early if there are no values
    if len(input_value.strip()) == 0:
        return []
    return [val.strip() for val in input_value.split(",")]


def parse_scval(input_type: str, input_value: str) -> stellar_xdr.SCVal:
    if input_type == "u32":
        return scval.to_uint32(int(input_value))
    elif input_type == "i128":
        return scval.to_int128(int(input_value))
    elif input_type == "symbol":
        return scval.to_symbol(input_value)
    elif input_type == "bytes":
        return scval.to_bytes(parse_hex(input_value))
    elif input_type == "address":
        return scval.to_address(Address(input_value))
    else:
        raise Exception("Unrecognized input type")


def parse_hex(input_value: str):
    return bytes.fromhex(input_value.removeprefix("0x"))
