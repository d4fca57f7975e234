"""Data models for Solana RPC and subscription payloads."""

import base64
from dataclasses import dataclass, field
from typing import Any

import base58


@dataclass(frozen=True)
class SignatureInfo:
    """One entry of ``getSignaturesForAddress``."""

    signature: str
    slot: int
    block_time: int | None = None
    err: Any = None

    @classmethod
    def from_rpc(cls, data: dict[str, Any]) -> "SignatureInfo":
        block_time = data.get("blockTime")
        return cls(
            signature=str(data["signature"]),
            slot=int(data["slot"]),
            block_time=int(block_time) if block_time is not None else None,
            err=data.get("err"),
        )

    @property
    def timestamp_ms(self) -> int | None:
        return self.block_time * 1000 if self.block_time is not None else None


@dataclass(frozen=True)
class CompiledInstruction:
    """An instruction with account references as indices into the key list."""

    program_id_index: int
    accounts: tuple[int, ...]
    data: bytes

    @classmethod
    def from_rpc(cls, data: dict[str, Any]) -> "CompiledInstruction":
        # json encoding carries instruction data as base58
        return cls(
            program_id_index=int(data["programIdIndex"]),
            accounts=tuple(int(a) for a in data.get("accounts", [])),
            data=base58.b58decode(data.get("data", "")),
        )


@dataclass(frozen=True)
class Transaction:
    """A confirmed transaction as returned by ``getTransaction`` (json encoding).

    ``instructions`` is in execution order: each top-level instruction is
    followed by the inner instructions it invoked.
    """

    signature: str
    slot: int
    account_keys: tuple[str, ...]
    instructions: tuple[CompiledInstruction, ...] = ()
    log_messages: tuple[str, ...] = ()
    block_time: int | None = None
    err: Any = None

    @classmethod
    def from_rpc(cls, data: dict[str, Any]) -> "Transaction":
        tx = data["transaction"]
        message = tx["message"]
        meta = data.get("meta") or {}

        account_keys = [str(k) for k in message.get("accountKeys", [])]
        loaded = meta.get("loadedAddresses") or {}
        account_keys.extend(str(k) for k in loaded.get("writable", []))
        account_keys.extend(str(k) for k in loaded.get("readonly", []))

        inner_by_index: dict[int, list[dict[str, Any]]] = {}
        for inner in meta.get("innerInstructions") or []:
            inner_by_index.setdefault(int(inner["index"]), []).extend(inner.get("instructions", []))

        instructions: list[CompiledInstruction] = []
        for index, raw in enumerate(message.get("instructions", [])):
            instructions.append(CompiledInstruction.from_rpc(raw))
            instructions.extend(CompiledInstruction.from_rpc(i) for i in inner_by_index.get(index, []))

        block_time = data.get("blockTime")
        return cls(
            signature=str(tx["signatures"][0]),
            slot=int(data["slot"]),
            account_keys=tuple(account_keys),
            instructions=tuple(instructions),
            log_messages=tuple(meta.get("logMessages") or ()),
            block_time=int(block_time) if block_time is not None else None,
            err=meta.get("err"),
        )

    @property
    def timestamp_ms(self) -> int | None:
        return self.block_time * 1000 if self.block_time is not None else None

    @property
    def fee_payer(self) -> str | None:
        return self.account_keys[0] if self.account_keys else None

    def program_id_of(self, instruction: CompiledInstruction) -> str | None:
        if instruction.program_id_index >= len(self.account_keys):
            return None
        return self.account_keys[instruction.program_id_index]

    def instructions_for(self, program_id: str) -> list[CompiledInstruction]:
        return [ix for ix in self.instructions if self.program_id_of(ix) == program_id]


@dataclass(frozen=True)
class ProgramAccount:
    """One entry of ``getProgramAccounts`` with base64 encoding."""

    pubkey: str
    owner: str
    data: bytes
    lamports: int = 0

    @classmethod
    def from_rpc(cls, data: dict[str, Any]) -> "ProgramAccount":
        account = data["account"]
        raw = account.get("data")
        if isinstance(raw, list):
            payload, encoding = raw[0], raw[1]
            if encoding != "base64":
                raise ValueError(f"Unsupported account encoding: {encoding}")
            decoded = base64.b64decode(payload)
        else:
            decoded = base64.b64decode(raw or "")
        return cls(
            pubkey=str(data["pubkey"]),
            owner=str(account.get("owner", "")),
            data=decoded,
            lamports=int(account.get("lamports", 0)),
        )


@dataclass(frozen=True)
class LogNotification:
    """A ``logsNotification`` push: logs of one transaction mentioning the program."""

    signature: str
    slot: int
    logs: tuple[str, ...] = field(default_factory=tuple)
    err: Any = None

    @classmethod
    def from_websocket_message(cls, data: dict[str, Any]) -> "LogNotification":
        result = data["params"]["result"]
        value = result["value"]
        return cls(
            signature=str(value["signature"]),
            slot=int(result["context"]["slot"]),
            logs=tuple(str(line) for line in value.get("logs") or ()),
            err=value.get("err"),
        )
