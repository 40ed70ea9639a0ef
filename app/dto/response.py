from typing import Generic, TypeVar, Optional
from pydantic import BaseModel

T = TypeVar("T")


class ResponseModel(BaseModel, Generic[T]):
    """Envelope for successful responses."""
    data: Optional[T] = None
    message: Optional[str] = None
    status_code: Optional[int] = 200

    @classmethod
    def success(cls, data: T = None, message: str = "Success", status_code: int = 200):
        return cls(data=data, message=message, status_code=status_code)


class ErrorResponse(BaseModel):
    """Body of every failed response; ``error_code`` is the failure kind."""
    error_code: str
    message: str
    status_code: int
