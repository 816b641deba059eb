import threading
from collections import deque
from typing import Deque, Dict, List, Optional

from pydantic import BaseModel, Field

from .errors import now_iso

# USD per 1K tokens
INPUT_TOKEN_PRICE = 0.002
OUTPUT_TOKEN_PRICE = 0.008


class GenerationRecord(BaseModel):
    template_id: str
    prompt_hash: str
    input_tokens: int = 0
    output_tokens: int = 0
    response_time_ms: int = 0
    success: bool
    error_message: Optional[str] = None
    script_valid: bool = False
    timestamp: str = Field(default_factory=now_iso)


class MetricsCollector:
    def __init__(self, history: int = 100):
        self._lock = threading.Lock()
        self._recent: Deque[GenerationRecord] = deque(maxlen=history)
        self.total_requests = 0
        self.successful_requests = 0
        self.failed_requests = 0
        self.total_input_tokens = 0
        self.total_output_tokens = 0
        self.total_response_time_ms = 0

    def record(self, record: GenerationRecord) -> None:
        with self._lock:
            self.total_requests += 1
            if record.success:
                self.successful_requests += 1
            else:
                self.failed_requests += 1
            self.total_input_tokens += record.input_tokens
            self.total_output_tokens += record.output_tokens
            self.total_response_time_ms += record.response_time_ms
            self._recent.append(record)

    def recent(self) -> List[GenerationRecord]:
        with self._lock:
            return list(self._recent)

    def snapshot(self) -> Dict[str, object]:
        with self._lock:
            cost = (self.total_input_tokens / 1000) * INPUT_TOKEN_PRICE + \
                (self.total_output_tokens / 1000) * OUTPUT_TOKEN_PRICE
            average = self.total_response_time_ms / self.total_requests if self.total_requests else 0
            return {
                "total_requests": self.total_requests,
                "successful_requests": self.successful_requests,
                "failed_requests": self.failed_requests,
                "total_input_tokens": self.total_input_tokens,
                "total_output_tokens": self.total_output_tokens,
                "estimated_cost_usd": round(cost, 6),
                "average_response_time_ms": round(average, 1),
            }
