"""Common encoder backend interface."""

from abc import ABC, abstractmethod

from ..models import BackendUsed, ImageAsset, NormalizationRequest


class EncoderBackend(ABC):
    """One resize/compress tier.

    ``encode`` raises ``BackendUnavailable`` or ``EncodeError`` on failure;
    the normalizer treats both the same way.
    """

    name: BackendUsed

    @abstractmethod
    async def encode(
        self,
        asset: ImageAsset,
        target: tuple[int, int],
        request: NormalizationRequest,
    ) -> ImageAsset:
        """Produce a new asset; ``target`` is the planner's (width, height)."""

    async def close(self) -> None:
        """Release any held resources."""
