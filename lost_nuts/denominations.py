"""Denomination splitting for freshly minted outputs."""

from __future__ import annotations

from .types import Keyset, ValidationError


class DenominationSystem:
    """Splits amounts into the denominations a keyset can sign."""

    @staticmethod
    def get_keyset_denominations(keyset: Keyset) -> list[int]:
        """Extract denominations from keyset keys.

        Args:
            keyset: Keyset containing an amount -> pubkey map

        Returns:
            Sorted list of denominations (ascending order)
        """
        denominations = []
        for amount_str in keyset["keys"]:
            try:
                denominations.append(int(amount_str))
            except (ValueError, TypeError):
                continue
        return sorted(denominations)

    @staticmethod
    def split_amount(amount: int, available_denominations: list[int]) -> list[int]:
        """Split an amount into a list of denominations, largest first.

        Uses a greedy algorithm which is exact for the power-of-two keysets
        Cashu mints publish.

        Raises:
            ValidationError: If the amount cannot be represented exactly
        """
        if amount <= 0:
            return []
        if not available_denominations:
            available_denominations = [2**i for i in range(21)]

        parts: list[int] = []
        remaining = amount
        for denom in sorted(available_denominations, reverse=True):
            while remaining >= denom:
                parts.append(denom)
                remaining -= denom

        if remaining:
            raise ValidationError(
                f"Amount {amount} cannot be split into available denominations",
                amount=amount,
            )
        return parts
