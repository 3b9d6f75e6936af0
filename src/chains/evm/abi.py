"""ABI encoding for the lending contracts the client talks to."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector
from web3 import Web3


@dataclass(frozen=True)
class ContractFunction:
    """One contract function: name, input types, output types."""

    name: str
    inputs: tuple[str, ...] = ()
    outputs: tuple[str, ...] = ()

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(self.inputs)})"

    @property
    def selector(self) -> bytes:
        return function_signature_to_4byte_selector(self.signature)

    def encode_input(self, *args: Any) -> str:
        if len(args) != len(self.inputs):
            raise ValueError(
                f"{self.signature} takes {len(self.inputs)} arguments, got {len(args)}"
            )
        normalized = [_normalize(t, a) for t, a in zip(self.inputs, args)]
        return "0x" + (self.selector + encode(list(self.inputs), normalized)).hex()

    def decode_output(self, data: str | bytes) -> tuple[Any, ...]:
        raw = _to_bytes(data)
        if not raw:
            raise ValueError(f"{self.signature} returned no data")
        try:
            return tuple(decode(list(self.outputs), raw))
        except DecodingError as e:
            raise ValueError(f"{self.signature} returned malformed data: {e}") from e


def _normalize(abi_type: str, value: Any) -> Any:
    if abi_type == "address" and isinstance(value, str):
        return Web3.to_checksum_address(value)
    return value


def _to_bytes(data: str | bytes | None) -> bytes:
    if data is None:
        return b""
    if isinstance(data, bytes):
        return data
    hex_str = data[2:] if data.startswith("0x") else data
    return bytes.fromhex(hex_str)


def checksum(address: str) -> str:
    return Web3.to_checksum_address(address)


def is_zero_address(address: str | None) -> bool:
    if not address:
        return True
    return int(address, 16) == 0


_LOAN_REQUEST_FIELDS = (
    "uint256", "address", "uint256", "address", "address", "uint256",
    "uint256", "uint256", "uint256", "uint256", "uint256", "uint8", "uint256",
)

_LENDER_OFFER_FIELDS = (
    "uint256", "address", "address", "uint256", "uint256", "uint256", "address",
    "uint256", "uint256", "uint256", "uint256", "uint256", "uint8", "uint256",
)

_LOAN_FIELDS = (
    "uint256", "uint256", "address", "address", "address", "uint256", "uint256",
    "address", "uint256", "uint256", "uint256", "uint256", "uint256", "uint256",
    "uint8", "uint256", "uint256", "bool", "uint256", "uint256", "uint256",
)

_FIAT_LOAN_STRUCT = (
    "(uint256,address,address,address,uint256,uint256,string,uint256,uint256,"
    "uint8,uint256,uint256,uint256,uint256,uint256,bool,bytes32)"
)

_FIAT_LENDER_OFFER_FIELDS = (
    "uint256", "address", "uint256", "uint256", "uint256", "string", "uint256",
    "uint256", "uint256", "uint256", "uint256", "uint8", "uint256", "uint256",
)


def _fn(name: str, inputs: tuple[str, ...] = (), outputs: tuple[str, ...] = ()) -> ContractFunction:
    return ContractFunction(name=name, inputs=inputs, outputs=outputs)


FUNCTIONS: dict[str, ContractFunction] = {
    f.name: f
    for f in (
        # LoanMarketPlace
        _fn("loanRequests", ("uint256",), _LOAN_REQUEST_FIELDS),
        _fn("lenderOffers", ("uint256",), _LENDER_OFFER_FIELDS),
        _fn("loans", ("uint256",), _LOAN_FIELDS),
        _fn("nextLoanId", (), ("uint256",)),
        _fn("nextLenderOfferId", (), ("uint256",)),
        _fn("nextLoanRequestId", (), ("uint256",)),
        _fn("calculateRepaymentAmount", ("uint256",), ("uint256",)),
        _fn("acceptLenderOffer", ("uint256", "address", "uint256", "uint256")),
        _fn("repayLoan", ("uint256", "uint256")),
        _fn(
            "createLoanRequest",
            ("address", "uint256", "address", "uint256", "uint256", "uint256"),
        ),
        _fn("cancelLoanRequest", ("uint256",)),
        _fn("cancelLenderOffer", ("uint256",)),
        _fn("fundLoanRequest", ("uint256",)),
        _fn(
            "createLenderOffer",
            ("address", "uint256", "address", "uint256", "uint256", "uint256"),
        ),
        # Configuration
        _fn("priceFeeds", ("address",), ("address",)),
        # Chainlink-style aggregator (MockV3Aggregator on test networks)
        _fn("latestRoundData", (), ("uint80", "int256", "uint256", "uint256", "uint80")),
        _fn("updateAnswer", ("int256",)),
        # LTVConfig
        _fn("getLTV", ("address", "uint256"), ("uint256",)),
        _fn("getLiquidationThreshold", ("address", "uint256"), ("uint256",)),
        # ERC20
        _fn("approve", ("address", "uint256"), ("bool",)),
        _fn("allowance", ("address", "address"), ("uint256",)),
        _fn("balanceOf", ("address",), ("uint256",)),
        # FiatOracle
        _fn("getExchangeRate", ("string",), ("uint256", "uint256")),
        # FiatLoanBridge
        _fn("getFiatLoan", ("uint256",), (_FIAT_LOAN_STRUCT,)),
        _fn("fiatLenderOffers", ("uint256",), _FIAT_LENDER_OFFER_FIELDS),
        _fn("nextFiatLoanId", (), ("uint256",)),
        _fn("nextFiatLenderOfferId", (), ("uint256",)),
        _fn("acceptFiatLenderOffer", ("uint256", "address", "uint256", "uint256")),
    )
}


def get_function(name: str) -> ContractFunction:
    try:
        return FUNCTIONS[name]
    except KeyError:
        raise ValueError(f"Unknown contract function '{name}'") from None


def encode_call(name: str, *args: Any) -> str:
    """Calldata hex string for ``name(args...)``."""
    return get_function(name).encode_input(*args)


def decode_result(name: str, data: str | bytes) -> tuple[Any, ...]:
    return get_function(name).decode_output(data)
