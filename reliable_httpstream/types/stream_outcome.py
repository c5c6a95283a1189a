from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class Completed(BaseModel):
    model_config: ConfigDict = ConfigDict(frozen=True)

    kind: Literal["completed"] = "completed"
    byte_count: int = Field(..., description="Bytes delivered to the consumer")
    checksum: str = Field(..., description="Base64 MD5 of the delivered bytes")


class Failed(BaseModel):
    model_config: ConfigDict = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    kind: Literal["failed"] = "failed"
    error: BaseException = Field(..., description="The error surfaced to the consumer")


class Aborted(BaseModel):
    model_config: ConfigDict = ConfigDict(frozen=True)

    kind: Literal["aborted"] = "aborted"


StreamOutcome = Union[Completed, Failed, Aborted]
