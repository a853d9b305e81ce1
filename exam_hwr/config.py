import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_API_URL = "http://localhost:8080"
DEFAULT_MODEL_PATH = "models/trace_mlt-4modern_hw_rimes_lines-v3+synth-1034184_best_encoder.tar.onnx"


@dataclass(frozen=True)
class PipelineConfig:
    api_base_url: str = DEFAULT_API_URL
    auth_token: Optional[str] = None       # bearer credential; checked per task, not here
    http_timeout_seconds: float = 30.0
    zone_tag: str = "ZoneID123"

    max_concurrent: int = 1                # recognition is expensive: serialized by default
    inter_task_delay_seconds: float = 0.2  # rate limit between completions and next dispatch
    pause_poll_seconds: float = 0.5

    model_path: str = DEFAULT_MODEL_PATH
    prefer_gpu: bool = True

    def __post_init__(self):
        if self.max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {self.max_concurrent}")
        if self.inter_task_delay_seconds < 0:
            raise ValueError(f"inter_task_delay_seconds must be >= 0, got {self.inter_task_delay_seconds}")
        if self.pause_poll_seconds <= 0:
            raise ValueError(f"pause_poll_seconds must be > 0, got {self.pause_poll_seconds}")
        if self.http_timeout_seconds <= 0:
            raise ValueError(f"http_timeout_seconds must be > 0, got {self.http_timeout_seconds}")

    @classmethod
    def from_env(cls, **overrides) -> "PipelineConfig":
        """
        Build a config from HWR_* environment variables.

        Keyword overrides win over the environment; None overrides are ignored
        so CLI options that were not given fall through to env/defaults.
        """
        env = os.environ
        values = {
            "api_base_url": env.get("HWR_API_URL", DEFAULT_API_URL).rstrip("/"),
            "auth_token": env.get("HWR_AUTH_TOKEN") or None,
            "http_timeout_seconds": float(env.get("HWR_HTTP_TIMEOUT", "30")),
            "zone_tag": env.get("HWR_ZONE_TAG", "ZoneID123"),
            "max_concurrent": int(env.get("HWR_MAX_CONCURRENT", "1")),
            "inter_task_delay_seconds": float(env.get("HWR_INTER_TASK_DELAY", "0.2")),
            "pause_poll_seconds": float(env.get("HWR_PAUSE_POLL", "0.5")),
            "model_path": env.get("HWR_MODEL_PATH", DEFAULT_MODEL_PATH).strip("\"'"),
            "prefer_gpu": env.get("HWR_PREFER_GPU", "yes").lower() in ("1", "yes", "true"),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
