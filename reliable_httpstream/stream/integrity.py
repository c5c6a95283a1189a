import base64
import hashlib


class IntegrityTracker:
    """Running MD5 and byte count over every byte handed to the consumer."""

    def __init__(self):
        self._md5 = hashlib.md5()
        self._byte_count = 0
        self._digest: str | None = None

    @property
    def byte_count(self) -> int:
        return self._byte_count

    @property
    def finalized(self) -> bool:
        return self._digest is not None

    def update(self, chunk: bytes) -> None:
        if self._digest is not None:
            raise RuntimeError("update() called after finalize()")
        self._md5.update(chunk)
        self._byte_count += len(chunk)

    def finalize(self) -> str:
        """Return the base64-encoded MD5 digest, as sent in Content-MD5."""

        if self._digest is not None:
            raise RuntimeError("finalize() called twice")
        self._digest = base64.b64encode(self._md5.digest()).decode("ascii")
        return self._digest
