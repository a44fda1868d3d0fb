"""Evidence storage protocol. Implementations: LocalEvidenceStorage."""

from typing import List, Protocol

from ..models.task import UploadResult


class EvidenceStorage(Protocol):
    """Object storage for submission evidence, addressed by bucket-relative path."""

    bucket: str

    async def upload(self, path: str, content: bytes, content_type: str, name: str) -> UploadResult:
        """Store an object. Never overwrites an existing path."""
        ...

    async def remove(self, paths: List[str]) -> int:
        """Delete objects. Returns how many existed and were removed."""
        ...

    def public_url(self, path: str) -> str:
        """URL under which a stored object is served."""
        ...
