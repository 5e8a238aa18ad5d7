"""Request and response shapes exchanged with the application shell."""
from typing import Optional
from pydantic import BaseModel, Field


class Command(BaseModel):
    """
    An inference request.

    Text inference carries the instruction itself; audio inference only
    flags that the already-streamed audio should be used.
    """
    text: Optional[str] = None
    audio: Optional[bool] = None


class Meta(BaseModel):
    """Statistics about one answer."""
    n_tokens: int = Field(ge=0)  # tokens produced across all stages
    n_secs: int = Field(ge=0)  # whole seconds spent in inference


class Response(BaseModel):
    """Generated answer, the text it answers and its metadata."""
    text: str
    instruct: str
    meta: Meta

    @classmethod
    def build(cls, instruct: str, text: str, n_tokens: int, elapsed: float) -> "Response":
        return cls(
            text=text,
            instruct=instruct,
            meta=Meta(n_tokens=n_tokens, n_secs=int(elapsed)),
        )
