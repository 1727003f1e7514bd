from pydantic import BaseModel
from typing import Optional, Union


class Paste(BaseModel):
    id: int
    token: str
    title: str
    content: str
    language: str = "auto"
    created_at: int
    expires_at: int
    original_duration: int
    views: int = 0
    max_views: Optional[int] = None
    is_public: bool = False

    @property
    def remaining_views(self) -> Optional[int]:
        if self.max_views is None:
            return None
        return max(self.max_views - self.views, 0)


class PasteCreate(BaseModel):
    content: str
    title: Optional[str] = None
    expires_in: Optional[Union[int, str]] = None
    token_length: Optional[Union[int, str]] = None
    language: Optional[str] = None
    max_views: Optional[Union[int, str]] = None
    is_public: Optional[Union[bool, str]] = False


class PasteCreated(BaseModel):
    token: str
    path: str
    expires_at: int
    language: str
    remaining_views: Optional[int] = None
    is_public: bool


class PublicPaste(BaseModel):
    token: str
    title: str
    content: str
    language: str
    created_at: int
    expires_at: int
    original_duration: int

    @classmethod
    def from_paste(cls, p: Paste) -> "PublicPaste":
        return cls(
            token=p.token,
            title=p.title,
            content=p.content,
            language=p.language,
            created_at=p.created_at,
            expires_at=p.expires_at,
            original_duration=p.original_duration,
        )
