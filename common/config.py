from typing import Optional

from pydantic_settings import BaseSettings


class WorkerSettings(BaseSettings):
    host: str = "0.0.0.0"
    port: int = 8001
    log_level: str = "info"
    model_id: str = "Systran/faster-whisper-tiny.en"
    device: str = "auto"
    compute_type: str = "auto"
    download_root: Optional[str] = None
    local_files_only: bool = False
    sample_rate: int = 16000
    chunk_length_s: int = 30
    stride_length_s: int = 5
    partial_every: int = 10

    model_config = {"env_prefix": "ASR_"}
