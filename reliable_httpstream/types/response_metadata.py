from typing import Mapping

from pydantic import BaseModel, ConfigDict, Field


class ResponseMetadata(BaseModel):
    """Integrity-relevant headers of a response.

    Captured from the first accepted response of a stream and frozen afterwards.
    """

    model_config: ConfigDict = ConfigDict(frozen=True)

    length: int | None = Field(default=None, description="Declared Content-Length")
    identity_tag: str | None = Field(default=None, description="Strong validator (ETag)")
    checksum: str | None = Field(default=None, description="Base64 Content-MD5")

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> "ResponseMetadata":
        """Build metadata from response headers.

        `headers` must do case-insensitive lookups, as `httpx.Headers` does.
        An unparsable Content-Length is treated as missing.
        """

        raw_length = headers.get("content-length")
        length: int | None = None
        if raw_length is not None:
            try:
                length = int(raw_length)
            except ValueError:
                length = None
            else:
                if length < 0:
                    length = None

        return cls(
            length=length,
            identity_tag=headers.get("etag") or None,
            checksum=headers.get("content-md5") or None,
        )

    @property
    def expected_length(self) -> int:
        """Length used for the completion test; a missing length counts as 0."""
        return self.length or 0
