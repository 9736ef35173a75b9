# streaming.py
"""
Progressive output: ProgressFrame records and their Server-Sent Events (SSE) encoding
"""
import json
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, AsyncIterator, Dict, List, Optional

from artifacts import EventCandidate

STAGES = ("database", "firecrawl", "cse", "complete", "error")


@dataclass
class ProgressFrame:
    """One step of a progressive search; events holds only what this stage added"""
    stage: str
    events: List[EventCandidate] = field(default_factory=list)
    total_so_far: int = 0
    is_complete: bool = False
    message: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "stage": self.stage,
            "events": [e.to_dict() for e in self.events],
            "totalSoFar": self.total_so_far,
            "isComplete": self.is_complete,
        }
        if self.message:
            payload["message"] = self.message
        if self.error:
            payload["error"] = self.error
        return payload


def format_sse(payload: Dict[str, Any]) -> str:
    """SSE data line"""
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


async def stream_frames(frames: AsyncIterator[ProgressFrame]) -> AsyncGenerator[str, None]:
    """Encode an async stream of frames as SSE chunks; a failing producer ends with an error frame"""
    try:
        async for frame in frames:
            yield format_sse(frame.to_dict())
    except Exception as e:
        print(f"[STREAMING][ERROR] {e}")
        yield format_sse(ProgressFrame(stage="error", is_complete=True, error=str(e)).to_dict())
