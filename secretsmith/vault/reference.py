"""Vault reference syntax: vault://Vault/Item[/Section...]/Field."""

from __future__ import annotations

from dataclasses import dataclass

SCHEMES = ("vault://", "op://")


@dataclass(frozen=True)
class VaultReference:
    vault: str
    item: str
    sections: tuple[str, ...]
    field: str

    @classmethod
    def parse(cls, reference: str) -> VaultReference:
        """Split a reference into its segments.

        Raises ValueError naming the first problem found.
        """
        if not reference:
            raise ValueError("Reference cannot be empty")
        for scheme in SCHEMES:
            if reference.startswith(scheme):
                body = reference[len(scheme):]
                break
        else:
            raise ValueError("Reference must start with vault://")

        parts = body.split("/")
        if len(parts) < 3:
            raise ValueError("Reference must have at least 3 parts: vault/item/field")
        labels = ["Vault name", "Item name"] + ["Section name"] * (len(parts) - 3) + ["Field name"]
        for label, part in zip(labels, parts):
            if not part:
                raise ValueError(f"{label} cannot be empty")
        return cls(vault=parts[0], item=parts[1], sections=tuple(parts[2:-1]), field=parts[-1])

    def segments(self) -> list[str]:
        return [self.vault, self.item, *self.sections, self.field]

    def to_op_uri(self) -> str:
        """Render the secret reference URI understood by the 1Password SDK."""
        return "op://" + "/".join(self.segments())

    def __str__(self) -> str:
        return "vault://" + "/".join(self.segments())
