from typing import Self

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RetryPolicy(BaseModel):
    """Retry budget for transient failures (connection errors and 5xx responses).

    The budget counts consecutive failures: it is restored as soon as a response
    is accepted. Premature closes and fatal failures never consume it.

    `max_attempts` counts the first attempt too, so a budget of K retries (K
    consecutive failures followed by a success) is `max_attempts=K + 1`, or
    `RetryPolicy.with_retries(K)`. The default of 4 attempts is 3 retries.
    """

    model_config: ConfigDict = ConfigDict(frozen=True)

    max_attempts: int = Field(
        default=4, gt=0, description="Attempts per request, including the first one"
    )
    min_delay: float = Field(
        default=1.0, gt=0, description="Lower bound of a backoff delay in seconds"
    )
    max_delay: float = Field(
        default=10.0, gt=0, description="Upper bound of a backoff delay in seconds"
    )

    @classmethod
    def with_retries(cls, retries: int, **kwargs) -> "RetryPolicy":
        """Policy that survives `retries` consecutive transient failures."""
        return cls(max_attempts=retries + 1, **kwargs)

    @model_validator(mode="after")
    def check_delay_bounds(self) -> Self:
        if self.min_delay > self.max_delay:
            raise ValueError(
                f"min_delay ({self.min_delay}) must not exceed "
                + f"max_delay ({self.max_delay})"
            )
        return self
